"""
Chat API endpoints.

POST creates a message and returns at once; generation continues in the
background. Viewers follow it over the SSE stream endpoint and may
disconnect and reconnect at any time.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from streamrelay.api.deps import get_services, get_viewer_id
from streamrelay.errors import StreamRelayError
from streamrelay.models import Message
from streamrelay.services.connection_manager import new_connection_id
from streamrelay.services.container import Services
from streamrelay.services.streaming import Heartbeat
from streamrelay.sse import HEADERS, MEDIA_TYPE, format_event, format_heartbeat

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/chat", tags=["chat"])


class CreateMessageRequest(BaseModel):
    """Request to generate an assistant message."""

    model_config = ConfigDict(populate_by_name=True)

    thread_id: Optional[str] = Field(None, alias="threadId")
    prompt: str = Field(..., min_length=1)
    model: str
    provider: str


class CreateMessageResponse(BaseModel):
    """Identifiers of the created messages."""

    model_config = ConfigDict(populate_by_name=True)

    thread_id: str = Field(alias="threadId")
    message_id: str = Field(alias="messageId")
    user_message_id: str = Field(alias="userMessageId")


class MessageResponse(BaseModel):
    """Stored state of one message."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    thread_id: str = Field(alias="threadId")
    role: str
    content: str
    status: str
    error: Optional[str] = None
    model: Optional[str] = None
    provider: Optional[str] = None
    created: Optional[str] = None
    updated: Optional[str] = None

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            thread_id=message.thread_id,
            role=message.role.value,
            content=message.content,
            status=message.status.value,
            error=message.error,
            model=message.model or None,
            provider=message.provider or None,
            created=message.created_at,
            updated=message.updated_at,
        )


@router.post("/messages", response_model=CreateMessageResponse)
async def create_message(
    request: CreateMessageRequest,
    viewer_id: str = Depends(get_viewer_id),
    services: Services = Depends(get_services),
) -> CreateMessageResponse:
    """
    Create a user message and start streaming the assistant's answer.

    Returns without waiting for generation.
    """
    if not request.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt cannot be empty")

    try:
        created = await services.chat.create_message(
            viewer_id,
            request.prompt,
            provider=request.provider,
            model=request.model,
            thread_id=request.thread_id,
        )
    except StreamRelayError as e:
        logger.error("Failed to create message: %s", e.message)
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return CreateMessageResponse(
        thread_id=created.thread_id,
        message_id=created.message_id,
        user_message_id=created.user_message_id,
    )


@router.get("/messages/{message_id}", response_model=MessageResponse)
async def get_message(
    message_id: str,
    viewer_id: str = Depends(get_viewer_id),
    services: Services = Depends(get_services),
) -> MessageResponse:
    """Current stored state of a message."""
    try:
        message = await services.chat.get_message(viewer_id, message_id)
    except StreamRelayError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return MessageResponse.from_message(message)


@router.get("/stream/{message_id}")
async def stream_message(
    message_id: str,
    viewer_id: str = Depends(get_viewer_id),
    services: Services = Depends(get_services),
) -> StreamingResponse:
    """
    SSE stream for one message.

    Events:
    - initial: stored snapshot, always first
    - delta: content grew (fullContent is authoritative)
    - complete / error: terminal, the stream closes after it
    Idle connections get ``: heartbeat`` comments.
    """
    try:
        await services.gateway.authorize(message_id, viewer_id)
    except StreamRelayError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    connection_id = new_connection_id()

    async def event_stream():
        async for event in services.gateway.relay(message_id, viewer_id, connection_id):
            if isinstance(event, Heartbeat):
                yield format_heartbeat(event.timestamp)
            else:
                yield format_event(event)

    return StreamingResponse(
        event_stream(),
        media_type=MEDIA_TYPE,
        headers={**HEADERS, "X-Connection-Id": connection_id},
    )
