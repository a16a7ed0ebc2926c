"""
Streaming Types.

Data structures for LLM streaming operations.
Requests and results are immutable; StreamState is the producer's
private accumulator.
"""
from dataclasses import dataclass, field
from typing import Optional

from streamrelay.models import MessageRole, MessageStatus


@dataclass(frozen=True)
class ConversationTurn:
    """One prior message handed to the provider as context."""

    role: MessageRole
    content: str


@dataclass(frozen=True)
class StreamRequest:
    """
    Immutable request for generating one assistant message.

    The target message already exists in ``streaming`` status; the request
    carries everything the generation source needs.
    """

    message_id: str
    thread_id: str
    user_id: str
    provider: str
    model: str
    prompt: str
    history: tuple[ConversationTurn, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class StreamChunk:
    """
    Single chunk of streamed content.

    Attributes:
        delta: New content since last chunk
        accumulated: Full content accumulated so far
    """

    delta: str
    accumulated: str


@dataclass(frozen=True)
class StreamResult:
    """Terminal outcome of one producer run."""

    message_id: str
    status: MessageStatus
    content: str
    error: Optional[str] = None
    persisted: bool = True  # False when the terminal write itself failed

    @property
    def is_error(self) -> bool:
        return self.status is MessageStatus.ERROR


@dataclass
class StreamState:
    """
    Mutable state of an active stream.

    Tracks accumulated content, failed content writes and whether the
    terminal write has landed.
    """

    message_id: str
    accumulated_content: str = ""
    fragment_count: int = 0
    failed_writes: int = 0
    terminal_status: Optional[MessageStatus] = None
    error: Optional[str] = None

    def append(self, delta: str) -> StreamChunk:
        """Append delta and return chunk with accumulated content."""
        self.accumulated_content += delta
        self.fragment_count += 1
        return StreamChunk(delta=delta, accumulated=self.accumulated_content)

    def complete(self) -> StreamResult:
        return StreamResult(
            message_id=self.message_id,
            status=MessageStatus.COMPLETE,
            content=self.accumulated_content,
        )

    def fail(self, error: str, persisted: bool = True) -> StreamResult:
        return StreamResult(
            message_id=self.message_id,
            status=MessageStatus.ERROR,
            content=self.accumulated_content,
            error=error,
            persisted=persisted,
        )
