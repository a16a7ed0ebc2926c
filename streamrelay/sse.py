"""
Server-Sent Events framing.

Server side: one ``data:`` line per notification, heartbeats as SSE comments
so browsers' EventSource ignores them while proxies see traffic.

Client side: ``iter_sse`` turns a line iterator back into notifications,
with ``None`` standing for a heartbeat.
"""
import json
import logging
import time
from typing import AsyncIterator, Optional

from pydantic import ValidationError

from streamrelay.models import Notification

logger = logging.getLogger(__name__)

MEDIA_TYPE = "text/event-stream"

HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}

HEARTBEAT_PREFIX = ": heartbeat"


def format_event(notification: Notification) -> str:
    return f"data: {notification.to_json()}\n\n"


def format_heartbeat(timestamp: Optional[float] = None) -> str:
    return f"{HEARTBEAT_PREFIX} {int(timestamp if timestamp is not None else time.time())}\n\n"


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[Optional[Notification]]:
    """
    Parse an SSE line stream.

    Yields a Notification per complete event and None per heartbeat comment.
    Multi-line ``data:`` fields are joined with newlines as in the SSE
    format; events that do not decode to a notification are skipped.
    """
    data_lines: list[str] = []

    async for raw in lines:
        line = raw.rstrip("\r\n")

        if not line:
            if data_lines:
                notification = _decode("\n".join(data_lines))
                data_lines = []
                if notification is not None:
                    yield notification
            continue

        if line.startswith(":"):
            if line.startswith(HEARTBEAT_PREFIX):
                yield None
            continue

        field, _, value = line.partition(":")
        if field == "data":
            data_lines.append(value[1:] if value.startswith(" ") else value)

    if data_lines:
        notification = _decode("\n".join(data_lines))
        if notification is not None:
            yield notification


def _decode(data: str) -> Optional[Notification]:
    try:
        return Notification.from_payload(json.loads(data))
    except (ValueError, ValidationError) as e:
        logger.warning("Skipping undecodable event: %s", e)
        return None
