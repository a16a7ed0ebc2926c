"""
In-memory message store.

Same contract as the Pocketbase store; used for local development and tests.
"""
import asyncio
import itertools
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from streamrelay.models import Message, MessageRole, MessageStatus, Thread

from .base import (
    MessageNotFoundError,
    MessageTerminalError,
    ThreadNotFoundError,
    ensure_terminal_status,
)

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryMessageStore:
    """Dict-backed store. Returned records are copies."""

    def __init__(self):
        self._threads: dict[str, Thread] = {}
        self._messages: dict[str, Message] = {}
        self._order: dict[str, int] = {}
        self._counter = itertools.count()
        self._lock = asyncio.Lock()

    # ==================== Threads ====================

    async def create_thread(self, user_id: str, title: str) -> Thread:
        now = _now()
        thread = Thread(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            self._threads[thread.id] = thread
            self._order[thread.id] = next(self._counter)
        return replace(thread)

    async def get_thread(self, thread_id: str) -> Thread:
        thread = self._threads.get(thread_id)
        if not thread:
            raise ThreadNotFoundError(thread_id)
        return replace(thread)

    async def list_threads(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Thread]:
        owned = [t for t in self._threads.values() if t.user_id == user_id]
        owned.sort(key=lambda t: (t.updated_at or "", self._order[t.id]), reverse=True)
        return [replace(t) for t in owned[offset : offset + limit]]

    async def delete_thread(self, thread_id: str) -> None:
        async with self._lock:
            if thread_id not in self._threads:
                raise ThreadNotFoundError(thread_id)
            for message_id in [
                m.id for m in self._messages.values() if m.thread_id == thread_id
            ]:
                del self._messages[message_id]
            del self._threads[thread_id]
        logger.info("Deleted thread %s", thread_id)

    # ==================== Messages ====================

    async def create_message(
        self,
        thread_id: str,
        role: MessageRole,
        content: str = "",
        status: MessageStatus = MessageStatus.STREAMING,
        model: str = "",
        provider: str = "",
    ) -> Message:
        now = _now()
        message = Message(
            id=str(uuid.uuid4()),
            thread_id=thread_id,
            role=role,
            content=content,
            status=status,
            model=model,
            provider=provider,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            thread = self._threads.get(thread_id)
            if not thread:
                raise ThreadNotFoundError(thread_id)
            self._messages[message.id] = message
            self._order[message.id] = next(self._counter)
            thread.updated_at = now
        return replace(message)

    async def read_message(self, message_id: str) -> Message:
        message = self._messages.get(message_id)
        if not message:
            raise MessageNotFoundError(message_id)
        return replace(message)

    async def list_messages(self, thread_id: str) -> list[Message]:
        if thread_id not in self._threads:
            raise ThreadNotFoundError(thread_id)
        messages = [m for m in self._messages.values() if m.thread_id == thread_id]
        messages.sort(key=lambda m: self._order[m.id])
        return [replace(m) for m in messages]

    async def write_message_content(self, message_id: str, content: str) -> None:
        async with self._lock:
            message = self._get_writable(message_id)
            message.content = content
            message.updated_at = _now()

    async def write_message_terminal(
        self,
        message_id: str,
        status: MessageStatus,
        content: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        ensure_terminal_status(status)
        async with self._lock:
            message = self._get_writable(message_id)
            if content is not None:
                message.content = content
            message.status = status
            message.error = error if status is MessageStatus.ERROR else None
            message.updated_at = _now()

    def _get_writable(self, message_id: str) -> Message:
        message = self._messages.get(message_id)
        if not message:
            raise MessageNotFoundError(message_id)
        if message.is_terminal:
            raise MessageTerminalError(message_id, message.status)
        return message

    # ==================== Lifecycle ====================

    async def health_check(self) -> dict:
        return {
            "message": "in-memory store",
            "threads": len(self._threads),
            "messages": len(self._messages),
        }

    async def close(self) -> None:
        return None
