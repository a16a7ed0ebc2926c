"""
Stream Notifier.

Publishes change notifications for a message on its bus topic.
Publishing is fire-and-forget: the bus never blocks or fails the producer.
"""
import logging

from streamrelay.models import Notification
from streamrelay.services.bus import NotificationBus, topic_for

from .types import StreamChunk

logger = logging.getLogger(__name__)


class StreamNotifier:
    """
    Sends stream events to the notification bus.

    Responsibilities:
    - Format notifications in the wire format
    - Publish on the message's topic

    ``initial`` notifications are never published here; gateways
    synthesize them from the store.
    """

    def __init__(self, bus: NotificationBus):
        self._bus = bus

    async def _publish(self, notification: Notification) -> None:
        await self._bus.publish(
            topic_for(notification.message_id),
            notification.to_payload(),
        )

    async def notify_delta(self, message_id: str, chunk: StreamChunk) -> None:
        """Publish the new fragment together with the full content."""
        await self._publish(Notification.delta(message_id, chunk.delta, chunk.accumulated))

    async def notify_complete(self, message_id: str, content: str) -> None:
        await self._publish(Notification.complete(message_id, content))
        logger.debug("Published complete for message: %s", message_id)

    async def notify_error(self, message_id: str, error: str, content: str = "") -> None:
        await self._publish(Notification.failed(message_id, error, full_content=content))
        logger.warning("Published error for message %s: %s", message_id, error)
