"""
Domain errors.

Each error carries a human readable ``message`` and the HTTP status the
API layer answers with.
"""
from typing import Optional

from streamrelay.models import MessageStatus


class StreamRelayError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class StoreError(StreamRelayError):
    """Persistence failure."""

    status_code = 502


class ThreadNotFoundError(StoreError):
    def __init__(self, thread_id: str):
        super().__init__(f"Thread not found: {thread_id}", 404)
        self.thread_id = thread_id


class MessageNotFoundError(StoreError):
    def __init__(self, message_id: str):
        super().__init__(f"Message not found: {message_id}", 404)
        self.message_id = message_id


class MessageTerminalError(StoreError):
    """A write targeted a message that already reached a terminal status."""

    def __init__(self, message_id: str, status: MessageStatus):
        super().__init__(f"Message {message_id} is already {status.value}", 409)
        self.message_id = message_id
        self.status = status


class AccessDeniedError(StreamRelayError):
    """Viewer does not own the thread the resource belongs to."""

    status_code = 403


class ProducerConflictError(StreamRelayError):
    """Another producer holds the lease for this message."""

    status_code = 409

    def __init__(self, message_id: str):
        super().__init__(f"A producer is already active for message {message_id}")
        self.message_id = message_id


class ProviderConfigError(StreamRelayError):
    """Unsupported provider or missing provider credential."""

    status_code = 400
