"""
Pocketbase-backed message store.

Collections:
- threads:  user_id, title
- messages: thread_id, role, content, status, error, model, provider

Only the lease-holding producer writes a streaming message, so the
terminal check before each write is a read-then-write without races.
"""
import logging
from typing import Optional

from streamrelay.models import Message, MessageRole, MessageStatus, Thread
from streamrelay.services.pocketbase import PocketbaseError, PocketbaseService

from .base import (
    MessageNotFoundError,
    MessageTerminalError,
    ThreadNotFoundError,
    ensure_terminal_status,
)

logger = logging.getLogger(__name__)

THREADS = "threads"
MESSAGES = "messages"
MAX_PER_PAGE = 500


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _to_thread(record: dict) -> Thread:
    return Thread(
        id=record["id"],
        user_id=record["user_id"],
        title=record.get("title") or "New Thread",
        created_at=record.get("created"),
        updated_at=record.get("updated"),
    )


def _to_message(record: dict) -> Message:
    return Message(
        id=record["id"],
        thread_id=record["thread_id"],
        role=MessageRole(record.get("role") or MessageRole.ASSISTANT.value),
        content=record.get("content") or "",
        status=MessageStatus(record.get("status") or MessageStatus.STREAMING.value),
        error=record.get("error") or None,
        model=record.get("model") or "",
        provider=record.get("provider") or "",
        created_at=record.get("created"),
        updated_at=record.get("updated"),
    )


class PocketbaseMessageStore:
    """MessageStore over the Pocketbase REST API."""

    def __init__(self, client: PocketbaseService):
        self._pb = client

    # ==================== Threads ====================

    async def create_thread(self, user_id: str, title: str) -> Thread:
        record = await self._pb.create_record(THREADS, {"user_id": user_id, "title": title})
        return _to_thread(record)

    async def get_thread(self, thread_id: str) -> Thread:
        try:
            record = await self._pb.get_record(THREADS, thread_id)
        except PocketbaseError as e:
            if e.status_code == 404:
                raise ThreadNotFoundError(thread_id)
            raise
        return _to_thread(record)

    async def list_threads(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Thread]:
        # Pocketbase pages are 1-based and capped; start at the page holding offset
        per_page = min(MAX_PER_PAGE, max(limit, 1))
        page = offset // per_page + 1
        skip = offset % per_page
        items: list[dict] = []
        while len(items) < skip + limit:
            result = await self._pb.list_records(
                THREADS,
                filter=f"user_id={_quote(user_id)}",
                sort="-updated",
                page=page,
                per_page=per_page,
            )
            items.extend(result.get("items", []))
            if page >= result.get("totalPages", 1):
                break
            page += 1
        return [_to_thread(r) for r in items[skip : skip + limit]]

    async def delete_thread(self, thread_id: str) -> None:
        await self.get_thread(thread_id)
        for message in await self.list_messages(thread_id):
            await self._pb.delete_record(MESSAGES, message.id)
        await self._pb.delete_record(THREADS, thread_id)
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
        record = await self._pb.create_record(
            MESSAGES,
            {
                "thread_id": thread_id,
                "role": role.value,
                "content": content,
                "status": status.value,
                "model": model,
                "provider": provider,
            },
        )
        return _to_message(record)

    async def read_message(self, message_id: str) -> Message:
        try:
            record = await self._pb.get_record(MESSAGES, message_id)
        except PocketbaseError as e:
            if e.status_code == 404:
                raise MessageNotFoundError(message_id)
            raise
        return _to_message(record)

    async def list_messages(self, thread_id: str) -> list[Message]:
        records = await self._pb.list_all_records(
            MESSAGES,
            filter=f"thread_id={_quote(thread_id)}",
            sort="+created,+id",
        )
        return [_to_message(r) for r in records]

    async def write_message_content(self, message_id: str, content: str) -> None:
        await self._ensure_writable(message_id)
        await self._pb.update_record(MESSAGES, message_id, {"content": content})

    async def write_message_terminal(
        self,
        message_id: str,
        status: MessageStatus,
        content: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        ensure_terminal_status(status)
        await self._ensure_writable(message_id)

        data = {
            "status": status.value,
            "error": error if status is MessageStatus.ERROR else "",
        }
        if content is not None:
            data["content"] = content
        await self._pb.update_record(MESSAGES, message_id, data)

    async def _ensure_writable(self, message_id: str) -> None:
        message = await self.read_message(message_id)
        if message.is_terminal:
            raise MessageTerminalError(message_id, message.status)

    # ==================== Lifecycle ====================

    async def health_check(self) -> dict:
        return await self._pb.health_check()

    async def close(self) -> None:
        await self._pb.close()
