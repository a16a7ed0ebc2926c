"""
Stream Gateway.

Adapts one viewer connection to the bus and the store.

The gateway subscribes to the message topic *before* reading the stored
message. Anything published while the read is in flight is queued on the
subscription and relayed after the synthesized ``initial`` notification;
viewers treat content as replace-not-append, so the overlap is harmless.
Reading first would lose any delta published between the read and the
subscription.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional, Union

from pydantic import ValidationError

from streamrelay.errors import AccessDeniedError, MessageNotFoundError, ThreadNotFoundError
from streamrelay.models import Message, Notification
from streamrelay.services.bus import NotificationBus, Subscription, topic_for
from streamrelay.services.connection_manager import ConnectionManager
from streamrelay.services.store import MessageStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Heartbeat:
    """Liveness signal emitted on an idle connection."""

    timestamp: float = field(default_factory=time.time)


GatewayEvent = Union[Notification, Heartbeat]


class StreamGateway:
    """
    Per-connection relay from bus + store to a viewer.

    Many gateways may follow the same message; producers are unaware of them.
    """

    def __init__(
        self,
        store: MessageStore,
        bus: NotificationBus,
        connections: Optional[ConnectionManager] = None,
        heartbeat_interval: float = 25.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._bus = bus
        self.connections = connections or ConnectionManager()
        self._heartbeat_interval = heartbeat_interval
        self._clock = clock

    async def authorize(self, message_id: str, viewer_id: str) -> Message:
        """
        Check that the viewer owns the thread of the message.

        Raises:
            MessageNotFoundError: no such message
            AccessDeniedError: message belongs to another user
        """
        message = await self._store.read_message(message_id)
        try:
            thread = await self._store.get_thread(message.thread_id)
        except ThreadNotFoundError:
            raise MessageNotFoundError(message_id)

        if thread.user_id != viewer_id:
            logger.warning("Viewer %s denied access to message %s", viewer_id, message_id)
            raise AccessDeniedError("You are not allowed to access this message")
        return message

    async def relay(
        self,
        message_id: str,
        viewer_id: str,
        connection_id: Optional[str] = None,
    ) -> AsyncIterator[GatewayEvent]:
        """
        Yield the viewer's event stream for one message.

        Sequence: subscribe, read the store, yield ``initial``; stop there if
        the message is terminal, otherwise relay bus notifications until a
        terminal one. Closing the generator (viewer disconnect) unsubscribes.
        """
        connection = self.connections.connect(message_id, viewer_id, connection_id)
        try:
            async with self._bus.subscribe(topic_for(message_id)) as subscription:
                message = await self._store.read_message(message_id)
                logger.info(
                    "Bootstrapping %s on message %s: status=%s, %d chars",
                    connection.id,
                    message_id,
                    message.status.value,
                    len(message.content),
                )
                yield Notification.initial(message)

                if message.is_terminal:
                    return

                follow = self._follow(message_id, subscription)
                try:
                    async for event in follow:
                        yield event
                        if isinstance(event, Notification) and event.is_terminal:
                            logger.info("Stream finished for %s on message %s", connection.id, message_id)
                            return
                finally:
                    await follow.aclose()

        except Exception as e:
            # Bus or store trouble ends this connection only; the viewer reconnects
            logger.warning("Gateway %s for message %s closed: %s", connection.id, message_id, e)

        finally:
            self.connections.disconnect(connection)

    async def _follow(
        self,
        message_id: str,
        subscription: Subscription,
    ) -> AsyncIterator[GatewayEvent]:
        last_emit = self._clock()
        while True:
            remaining = self._heartbeat_interval - (self._clock() - last_emit)
            if remaining <= 0:
                yield Heartbeat()
                last_emit = self._clock()
                continue

            payload = await subscription.next_payload(timeout=remaining)
            if payload is None:
                continue

            try:
                notification = Notification.from_payload(payload)
            except ValidationError as e:
                logger.warning("Dropping invalid notification on %s: %s", subscription.topic, e)
                continue

            if notification.message_id != message_id:
                continue

            yield notification
            last_emit = self._clock()
