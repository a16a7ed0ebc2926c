"""
Message Store contract.

The store holds the authoritative state of threads and messages.
Everything else in the streaming pipeline treats it as the source of truth.
"""
from typing import Optional, Protocol

from streamrelay.errors import (
    MessageNotFoundError,
    MessageTerminalError,
    StoreError,
    ThreadNotFoundError,
)
from streamrelay.models import Message, MessageRole, MessageStatus, Thread

__all__ = [
    "MessageStore",
    "StoreError",
    "MessageNotFoundError",
    "MessageTerminalError",
    "ThreadNotFoundError",
    "ensure_terminal_status",
    "make_title",
]


class MessageStore(Protocol):
    """Async persistence for threads and messages."""

    async def create_thread(self, user_id: str, title: str) -> Thread: ...

    async def get_thread(self, thread_id: str) -> Thread: ...

    async def list_threads(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Thread]: ...

    async def delete_thread(self, thread_id: str) -> None: ...

    async def create_message(
        self,
        thread_id: str,
        role: MessageRole,
        content: str = "",
        status: MessageStatus = MessageStatus.STREAMING,
        model: str = "",
        provider: str = "",
    ) -> Message: ...

    async def read_message(self, message_id: str) -> Message: ...

    async def list_messages(self, thread_id: str) -> list[Message]: ...

    async def write_message_content(self, message_id: str, content: str) -> None: ...

    async def write_message_terminal(
        self,
        message_id: str,
        status: MessageStatus,
        content: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None: ...

    async def health_check(self) -> dict: ...

    async def close(self) -> None: ...


def ensure_terminal_status(status: MessageStatus) -> None:
    if not status.is_terminal:
        raise ValueError(f"Not a terminal status: {status.value}")


def make_title(prompt: str, limit: int = 50) -> str:
    """Thread title derived from the first prompt."""
    title = prompt.strip()
    if len(title) > limit:
        return title[:limit] + "..."
    return title or "New Thread"
