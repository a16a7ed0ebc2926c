"""Models package for streamrelay."""

from streamrelay.models.message import (
    Message,
    MessageRole,
    MessageStatus,
    Provider,
    Thread,
)
from streamrelay.models.notification import (
    Notification,
    NotificationType,
)

__all__ = [
    "Message",
    "MessageRole",
    "MessageStatus",
    "Provider",
    "Thread",
    "Notification",
    "NotificationType",
]
