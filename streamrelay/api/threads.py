"""
Threads API endpoints.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from streamrelay.api.chat import MessageResponse
from streamrelay.api.deps import get_services, get_viewer_id
from streamrelay.errors import StreamRelayError
from streamrelay.models import Thread
from streamrelay.services.container import Services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/threads", tags=["threads"])


class ThreadResponse(BaseModel):
    """Thread response."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str = Field(alias="userId")
    title: str
    created: Optional[str] = None
    updated: Optional[str] = None

    @classmethod
    def from_thread(cls, thread: Thread) -> "ThreadResponse":
        return cls(
            id=thread.id,
            user_id=thread.user_id,
            title=thread.title,
            created=thread.created_at,
            updated=thread.updated_at,
        )


class ThreadListResponse(BaseModel):
    """List of threads."""

    items: list[ThreadResponse]


class ThreadWithMessagesResponse(BaseModel):
    """Thread with its messages in creation order."""

    thread: ThreadResponse
    messages: list[MessageResponse]


@router.get("", response_model=ThreadListResponse)
async def list_threads(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    viewer_id: str = Depends(get_viewer_id),
    services: Services = Depends(get_services),
) -> ThreadListResponse:
    """Viewer's threads, most recently updated first."""
    try:
        threads = await services.chat.list_threads(viewer_id, limit=limit, offset=offset)
    except StreamRelayError as e:
        logger.error("Failed to list threads: %s", e.message)
        raise HTTPException(status_code=e.status_code, detail="Failed to load threads")

    return ThreadListResponse(items=[ThreadResponse.from_thread(t) for t in threads])


@router.get("/{thread_id}", response_model=ThreadWithMessagesResponse)
async def get_thread(
    thread_id: str,
    viewer_id: str = Depends(get_viewer_id),
    services: Services = Depends(get_services),
) -> ThreadWithMessagesResponse:
    """Get thread with message history."""
    try:
        result = await services.chat.get_thread_with_messages(viewer_id, thread_id)
    except StreamRelayError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return ThreadWithMessagesResponse(
        thread=ThreadResponse.from_thread(result.thread),
        messages=[MessageResponse.from_message(m) for m in result.messages],
    )


@router.delete("/{thread_id}")
async def delete_thread(
    thread_id: str,
    viewer_id: str = Depends(get_viewer_id),
    services: Services = Depends(get_services),
) -> dict:
    """Delete a thread and all of its messages."""
    try:
        await services.chat.delete_thread(viewer_id, thread_id)
    except StreamRelayError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {"success": True}
