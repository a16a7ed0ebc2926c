"""
Notification Models.

Wire format for change notifications carried on the bus and relayed
to viewers. Field names on the wire are camelCase.
"""
import json
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from streamrelay.models.message import Message, MessageStatus


class NotificationType(str, Enum):
    """Kinds of change notification."""

    INITIAL = "initial"    # Synthesized by the gateway from the store
    DELTA = "delta"        # Content grew
    COMPLETE = "complete"  # Terminal success
    ERROR = "error"        # Terminal failure


class Notification(BaseModel):
    """
    Change notification for one message.

    ``full_content`` is the authoritative cumulative text; ``content`` is the
    fragment that produced it and is only a convenience for delta consumers.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: NotificationType
    message_id: str = Field(alias="messageId")
    content: Optional[str] = Field(
        default=None,
        description="Fragment appended by this delta",
    )
    full_content: Optional[str] = Field(
        default=None,
        alias="fullContent",
        description="Full accumulated content",
    )
    status: Optional[MessageStatus] = Field(
        default=None,
        description="Message status, sent with initial notifications",
    )
    error: Optional[str] = Field(
        default=None,
        description="Error detail, sent with error notifications",
    )

    @property
    def is_terminal(self) -> bool:
        return self.type in (NotificationType.COMPLETE, NotificationType.ERROR)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_payload())

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "Notification":
        return cls.model_validate(data)

    @classmethod
    def initial(cls, message: Message) -> "Notification":
        """Snapshot of stored state, used to bootstrap a viewer."""
        return cls(
            type=NotificationType.INITIAL,
            message_id=message.id,
            full_content=message.content or "",
            status=message.status,
            error=message.error,
        )

    @classmethod
    def delta(cls, message_id: str, fragment: str, full_content: str) -> "Notification":
        return cls(
            type=NotificationType.DELTA,
            message_id=message_id,
            content=fragment,
            full_content=full_content,
        )

    @classmethod
    def complete(cls, message_id: str, full_content: str) -> "Notification":
        return cls(
            type=NotificationType.COMPLETE,
            message_id=message_id,
            full_content=full_content,
        )

    @classmethod
    def failed(
        cls,
        message_id: str,
        error: str,
        full_content: Optional[str] = None,
    ) -> "Notification":
        return cls(
            type=NotificationType.ERROR,
            message_id=message_id,
            error=error,
            full_content=full_content,
        )
