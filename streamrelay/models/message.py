"""
Message Models.

Threads own messages; an assistant message is created in ``streaming``
status and moves exactly once to a terminal status.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class MessageStatus(str, Enum):
    """Lifecycle of a message."""

    STREAMING = "streaming"  # Producer still writing
    COMPLETE = "complete"    # Terminal, generation finished
    ERROR = "error"          # Terminal, generation or persistence failed

    @property
    def is_terminal(self) -> bool:
        return self is not MessageStatus.STREAMING


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Provider(str, Enum):
    """Hosted LLM providers a message can be generated with."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"


@dataclass
class Thread:
    """Conversation owned by a single user."""

    id: str
    user_id: str
    title: str = "New Thread"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Message:
    """Authoritative state of a single message."""

    id: str
    thread_id: str
    role: MessageRole
    content: str = ""
    status: MessageStatus = MessageStatus.STREAMING
    error: Optional[str] = None
    model: str = ""
    provider: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
