"""
Client Stream Controller.

Keeps one viewer's picture of one message in sync with the server across
disconnects.

``handle`` is pure bookkeeping: it takes a discrete event, updates the view
and the state machine, and returns the Action the driver must perform.
``run`` is the asyncio driver that turns transports, timers and the
liveness watchdog into those events.

Every notification is applied replace-not-append: content always comes
from the cumulative ``fullContent``, so replaying ``initial`` after a
reconnect or receiving the same delta twice leaves the view unchanged.
"""
import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional, Union

from streamrelay.config import Settings
from streamrelay.models import MessageStatus, Notification, NotificationType

from .machine import StreamMachine
from .policy import ReconnectPolicy
from .transport import StreamRejectedError, Transport

logger = logging.getLogger(__name__)

CONNECTION_LOST_ERROR = "Connection lost. Retry to resume the stream."


@dataclass
class ViewState:
    """What the viewer shows for one message."""

    message_id: str
    content: str = ""
    status: MessageStatus = MessageStatus.STREAMING
    error: Optional[str] = None
    local_error: bool = False  # error raised by the controller, not the server
    connection: str = "idle"
    retries: int = 0


# ==================== Events ====================


@dataclass(frozen=True)
class Start:
    pass


@dataclass(frozen=True)
class TransportOpened:
    attempt: int


@dataclass(frozen=True)
class NotificationReceived:
    """A notification, or a heartbeat when ``notification`` is None."""

    attempt: int
    notification: Optional[Notification] = None


@dataclass(frozen=True)
class TransportFailed:
    attempt: int
    reason: str = ""
    permanent: bool = False


@dataclass(frozen=True)
class LivenessTimeout:
    attempt: int


@dataclass(frozen=True)
class VisibilityChanged:
    visible: bool


@dataclass(frozen=True)
class RetryDue:
    attempt: int


@dataclass(frozen=True)
class ManualRetry:
    pass


ControllerEvent = Union[
    Start,
    TransportOpened,
    NotificationReceived,
    TransportFailed,
    LivenessTimeout,
    VisibilityChanged,
    RetryDue,
    ManualRetry,
]


@dataclass(frozen=True)
class Action:
    """
    Side effects requested by ``handle``.

    Attributes:
        close: drop the current transport
        connect: open a transport for this attempt number
        retry_in: deliver RetryDue after this many seconds
    """

    close: bool = False
    connect: Optional[int] = None
    retry_in: Optional[float] = None


NO_ACTION = Action()


class _Closed:
    pass


class ClientStreamController:
    """
    Follows one message through connect, reconnect and terminal states.

    Usage:
        controller = ClientStreamController.from_settings(
            message_id, SSETransport(client, user_id), get_settings()
        )
        view = await controller.run()
    """

    def __init__(
        self,
        message_id: str,
        transport: Optional[Transport] = None,
        policy: Optional[ReconnectPolicy] = None,
        liveness_timeout: float = 45.0,
        on_update: Optional[Callable[[ViewState], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        visible: bool = True,
    ):
        self.message_id = message_id
        self.view = ViewState(message_id=message_id)
        self.machine = StreamMachine()
        self.policy = policy or ReconnectPolicy()
        self._transport = transport
        self._liveness_timeout = liveness_timeout
        self._on_update = on_update
        self._sleep = sleep
        self._visible = visible

        self._attempt = 0
        self._last_delay = 0.0
        self._retry_deferred = False

        self._events: Optional[asyncio.Queue] = None
        self._transport_task: Optional[asyncio.Task] = None
        self._timers: set[asyncio.Task] = set()
        self._last_seen = 0.0

    @classmethod
    def from_settings(
        cls,
        message_id: str,
        transport: Transport,
        settings: Settings,
        **kwargs,
    ) -> "ClientStreamController":
        """Controller with backoff and liveness tunables taken from settings."""
        return cls(
            message_id,
            transport,
            policy=ReconnectPolicy.from_settings(settings),
            liveness_timeout=settings.client_liveness_timeout,
            **kwargs,
        )

    # ==================== Event handling ====================

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def liveness_timeout(self) -> float:
        return self._liveness_timeout

    def handle(self, event: ControllerEvent) -> Action:
        """Apply one event and return what the driver has to do next."""
        before = replace(self.view)
        action = self._dispatch(event)
        self.view.connection = self.machine.state_id
        if self._on_update and self.view != before:
            self._on_update(replace(self.view))
        return action

    def _dispatch(self, event: ControllerEvent) -> Action:
        if isinstance(event, Start):
            if not self.machine.idle.is_active:
                return NO_ACTION
            self.machine.start()
            return self._connect()

        if isinstance(event, VisibilityChanged):
            return self._on_visibility(event.visible)

        if isinstance(event, ManualRetry):
            return self._on_manual_retry()

        if isinstance(event, RetryDue):
            if event.attempt != self._attempt or not self.machine.reconnecting.is_active:
                return NO_ACTION
            if not self._visible:
                self._retry_deferred = True
                return NO_ACTION
            self.machine.retry()
            return self._connect()

        # Transport events from a superseded attempt are stale
        if event.attempt != self._attempt or not self.machine.is_live:
            return NO_ACTION

        if isinstance(event, TransportOpened):
            if self.machine.connecting.is_active:
                self.machine.opened()
            return NO_ACTION

        if isinstance(event, NotificationReceived):
            if self.machine.connecting.is_active:
                self.machine.opened()
            if event.notification is None:
                return NO_ACTION
            return self._apply(event.notification)

        if isinstance(event, TransportFailed):
            logger.info("Transport for %s failed (attempt %d): %s", self.message_id, event.attempt, event.reason)
            if event.permanent:
                return self._give_up(event.reason or CONNECTION_LOST_ERROR, close=False)
            return self._lost(close=False)

        if isinstance(event, LivenessTimeout):
            logger.info("No activity on %s for %.0fs, reconnecting", self.message_id, self._liveness_timeout)
            return self._lost(close=True)

        return NO_ACTION

    def _apply(self, notification: Notification) -> Action:
        if notification.message_id != self.message_id:
            return NO_ACTION

        # Data arrived, the connection is healthy again
        self.view.retries = 0
        self._last_delay = 0.0

        if notification.type is NotificationType.INITIAL:
            self.view.content = notification.full_content or ""
            self.view.status = notification.status or MessageStatus.STREAMING
            self.view.error = notification.error
            self.view.local_error = False
            if self.view.status is MessageStatus.COMPLETE:
                self.machine.finish()
                return Action(close=True)
            if self.view.status is MessageStatus.ERROR:
                self.view.error = notification.error or "Unknown error"
                self.machine.fail()
                return Action(close=True)
            return NO_ACTION

        if notification.type is NotificationType.DELTA:
            if notification.full_content is not None:
                self.view.content = notification.full_content
            return NO_ACTION

        if notification.full_content is not None:
            self.view.content = notification.full_content

        if notification.type is NotificationType.COMPLETE:
            self.view.status = MessageStatus.COMPLETE
            self.view.error = None
            self.machine.finish()
        else:
            self.view.status = MessageStatus.ERROR
            self.view.error = notification.error or "Unknown error"
            self.machine.fail()
        self.view.local_error = False
        return Action(close=True)

    def _lost(self, close: bool) -> Action:
        if self.policy.exhausted(self.view.retries):
            return self._give_up(CONNECTION_LOST_ERROR, close=close)

        self.machine.transport_lost()
        if not self._visible:
            # No timer while hidden; the retry is counted here and fires on show
            self.view.retries += 1
            self._retry_deferred = True
            return Action(close=close)
        return Action(close=close, retry_in=self._next_delay())

    def _give_up(self, error: str, close: bool) -> Action:
        logger.warning("Giving up on %s after %d retries: %s", self.message_id, self.view.retries, error)
        self.machine.give_up()
        self._retry_deferred = False
        self.view.error = error
        self.view.local_error = True
        return Action(close=close)

    def _on_visibility(self, visible: bool) -> Action:
        self._visible = visible
        if not visible or not self._retry_deferred:
            return NO_ACTION
        if not self.machine.reconnecting.is_active:
            self._retry_deferred = False
            return NO_ACTION
        self._retry_deferred = False
        self.machine.retry()
        return self._connect()

    def _on_manual_retry(self) -> Action:
        if not (self.machine.failed.is_active or self.machine.reconnecting.is_active):
            return NO_ACTION
        self.view.retries = 0
        self._last_delay = 0.0
        self._retry_deferred = False
        if self.view.local_error:
            self.view.error = None
            self.view.local_error = False
        self.machine.manual_retry()
        return self._connect()

    def _next_delay(self) -> float:
        delay = self.policy.delay(self.view.retries, self._last_delay)
        self._last_delay = delay
        self.view.retries += 1
        return delay

    def _connect(self) -> Action:
        self._attempt += 1
        return Action(close=True, connect=self._attempt)

    # ==================== Driver ====================

    @property
    def is_finished(self) -> bool:
        return self.machine.is_done

    def set_visible(self, visible: bool) -> None:
        self._post(VisibilityChanged(visible))

    def reconnect(self) -> None:
        """Manual reconnect: resets the retry counter and connects at once."""
        self._post(ManualRetry())

    def close(self) -> None:
        """Stop following the message (viewer navigated away)."""
        self._post(_Closed())

    async def run(self) -> ViewState:
        """
        Follow the message until it is terminal or ``close()`` is called.

        Stays alive in the ``failed`` state so ``reconnect()`` can resume.
        """
        if self._transport is None:
            raise RuntimeError("A transport is required to run the controller")

        loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        try:
            await self._perform(self.handle(Start()))

            while not self.is_finished:
                timeout = None
                if self.machine.is_live:
                    timeout = max(0.0, self._liveness_timeout - (loop.time() - self._last_seen))
                try:
                    event = await asyncio.wait_for(self._events.get(), timeout)
                except asyncio.TimeoutError:
                    event = LivenessTimeout(self._attempt)

                if isinstance(event, _Closed):
                    break
                if isinstance(event, (TransportOpened, NotificationReceived)) and event.attempt == self._attempt:
                    self._last_seen = loop.time()

                await self._perform(self.handle(event))

        finally:
            await self._stop_transport()
            for timer in list(self._timers):
                timer.cancel()
            self._timers.clear()

        return replace(self.view)

    def _post(self, event) -> None:
        if self._events is None:
            if not isinstance(event, _Closed):
                self.handle(event)
            return
        self._events.put_nowait(event)

    async def _perform(self, action: Action) -> None:
        if action.close:
            await self._stop_transport()
        if action.retry_in is not None:
            self._schedule(action.retry_in, RetryDue(self._attempt))
        if action.connect is not None:
            self._last_seen = asyncio.get_running_loop().time()
            self._transport_task = asyncio.create_task(
                self._pump(action.connect),
                name=f"stream-view-{self.message_id}-{action.connect}",
            )

    def _schedule(self, delay: float, event: ControllerEvent) -> None:
        async def fire():
            await self._sleep(delay)
            self._post(event)

        timer = asyncio.create_task(fire())
        self._timers.add(timer)
        timer.add_done_callback(self._timers.discard)

    async def _pump(self, attempt: int) -> None:
        try:
            async with self._transport.open(self.message_id) as events:
                self._post(TransportOpened(attempt))
                async for item in events:
                    self._post(NotificationReceived(attempt, item))
            self._post(TransportFailed(attempt, "stream closed"))
        except asyncio.CancelledError:
            raise
        except StreamRejectedError as e:
            self._post(TransportFailed(attempt, str(e), permanent=True))
        except Exception as e:
            self._post(TransportFailed(attempt, str(e) or e.__class__.__name__))

    async def _stop_transport(self) -> None:
        task, self._transport_task = self._transport_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
