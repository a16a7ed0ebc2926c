"""
Stream Producer.

Turns one text generation into persisted message state plus bus
notifications. One producer runs per in-flight message.

Ordering per message:
- each content write happens before the delta published for that step
- content snapshots only grow while streaming
- the terminal write is the last write, followed by the terminal notification
"""
import asyncio
import logging
import time
from typing import AsyncIterator, Callable, Optional

from streamrelay.models import MessageStatus
from streamrelay.services.store import MessageStore

from .notifier import StreamNotifier
from .types import StreamRequest, StreamResult, StreamState

logger = logging.getLogger(__name__)

INTERRUPTED_ERROR = "Generation interrupted"


def describe_error(error: BaseException) -> str:
    """Non-empty, human readable error detail."""
    return str(error) or error.__class__.__name__


class StreamProducer:
    """
    Drives one generation to a terminal state.

    Content writes can be coalesced with ``persist_interval`` (seconds);
    the terminal write always carries the true final content. A failed
    write while streaming is logged and streaming continues. Generation
    errors are terminal and never retried here.
    """

    def __init__(
        self,
        store: MessageStore,
        notifier: StreamNotifier,
        persist_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._notifier = notifier
        self._persist_interval = persist_interval
        self._clock = clock

    async def run(
        self,
        request: StreamRequest,
        source: AsyncIterator[str],
    ) -> StreamResult:
        """
        Consume ``source`` to completion for ``request.message_id``.

        Never raises for generation or persistence failures; those end the
        message in ``error``. Cancellation finalises the message and is
        re-raised.
        """
        state = StreamState(message_id=request.message_id)
        try:
            return await self._produce(request, source, state)
        except asyncio.CancelledError:
            logger.warning("Stream %s cancelled", request.message_id)
            await self._finish_interrupted(state)
            raise

    async def _produce(
        self,
        request: StreamRequest,
        source: AsyncIterator[str],
        state: StreamState,
    ) -> StreamResult:
        last_write: Optional[float] = None
        try:
            async for fragment in source:
                chunk = state.append(fragment)

                if self._write_due(last_write):
                    await self._persist_content(state)
                    last_write = self._clock()

                await self._notifier.notify_delta(request.message_id, chunk)

        except Exception as e:
            logger.exception("Stream %s failed: %s", request.message_id, e)
            return await self._finish_error(state, describe_error(e))

        finally:
            await _close_source(source)

        return await self._finish_complete(state)

    def _write_due(self, last_write: Optional[float]) -> bool:
        if self._persist_interval <= 0 or last_write is None:
            return True
        return self._clock() - last_write >= self._persist_interval

    async def _persist_content(self, state: StreamState) -> None:
        content = state.accumulated_content
        try:
            await self._store.write_message_content(state.message_id, content)
        except Exception as e:
            state.failed_writes += 1
            logger.warning(
                "Failed to persist content for %s (%d chars), continuing: %s",
                state.message_id,
                len(content),
                e,
            )

    async def _finish_complete(self, state: StreamState) -> StreamResult:
        try:
            await self._store.write_message_terminal(
                state.message_id,
                MessageStatus.COMPLETE,
                content=state.accumulated_content,
            )
        except Exception as e:
            logger.exception("Failed to persist completion for %s", state.message_id)
            return await self._finish_error(
                state,
                f"Failed to save response: {describe_error(e)}",
            )

        state.terminal_status = MessageStatus.COMPLETE
        await self._notifier.notify_complete(state.message_id, state.accumulated_content)

        logger.info(
            "Stream %s completed: %d fragments, %d chars, %d failed writes",
            state.message_id,
            state.fragment_count,
            len(state.accumulated_content),
            state.failed_writes,
        )
        return state.complete()

    async def _finish_interrupted(self, state: StreamState) -> None:
        """Leave the message terminal and tell viewers, whatever point cancellation hit."""
        # Already stored as terminal, only the notification may be missing
        if state.terminal_status is MessageStatus.COMPLETE:
            await self._notifier.notify_complete(state.message_id, state.accumulated_content)
            return
        if state.terminal_status is MessageStatus.ERROR:
            await self._notifier.notify_error(state.message_id, state.error, state.accumulated_content)
            return
        await self._finish_error(state, INTERRUPTED_ERROR)

    async def _finish_error(self, state: StreamState, error: str) -> StreamResult:
        """Record the failure if the store allows it, then always notify viewers."""
        persisted = True
        try:
            await self._store.write_message_terminal(
                state.message_id,
                MessageStatus.ERROR,
                content=state.accumulated_content,
                error=error,
            )
            state.terminal_status = MessageStatus.ERROR
            state.error = error
        except Exception as e:
            persisted = False
            logger.error("Failed to persist error state for %s: %s", state.message_id, e)

        await self._notifier.notify_error(state.message_id, error, state.accumulated_content)
        return state.fail(error, persisted=persisted)


async def _close_source(source: AsyncIterator[str]) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug("Error closing generation source: %s", e)
