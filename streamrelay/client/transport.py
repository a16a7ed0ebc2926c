"""
SSE transport for the viewer-side controller.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Protocol

import httpx

from streamrelay.models import Notification
from streamrelay.sse import MEDIA_TYPE, iter_sse

logger = logging.getLogger(__name__)

StreamEvents = AsyncIterator[Optional[Notification]]


class StreamRejectedError(Exception):
    """The server refused the stream; reconnecting cannot help."""

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Stream rejected ({status_code}): {detail}")


class Transport(Protocol):
    def open(self, message_id: str) -> "AsyncIterator[StreamEvents]":
        """Async context manager yielding notifications, None per heartbeat."""
        ...


class SSETransport:
    """
    Opens the gateway's SSE endpoint over a shared httpx client.

    The read timeout is left unbounded; the controller's liveness watchdog
    decides when a silent connection is dead.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        viewer_id: str,
        connect_timeout: float = 10.0,
    ):
        self._client = client
        self._viewer_id = viewer_id
        self._timeout = httpx.Timeout(connect_timeout, read=None)

    @asynccontextmanager
    async def open(self, message_id: str) -> AsyncIterator[StreamEvents]:
        async with self._client.stream(
            "GET",
            f"/api/chat/stream/{message_id}",
            headers={"X-User-Id": self._viewer_id, "Accept": MEDIA_TYPE},
            timeout=self._timeout,
        ) as response:
            if response.status_code >= 500:
                raise httpx.HTTPStatusError(
                    f"Stream endpoint returned {response.status_code}",
                    request=response.request,
                    response=response,
                )
            if response.status_code != 200:
                body = await response.aread()
                raise StreamRejectedError(response.status_code, body.decode(errors="replace"))

            logger.debug(
                "Stream opened for %s (%s)",
                message_id,
                response.headers.get("X-Connection-Id", "-"),
            )
            yield iter_sse(response.aiter_lines())
