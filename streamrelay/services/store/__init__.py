"""
Message Store.

Authoritative persistence for threads and messages:
- MessageStore: the async contract the streaming pipeline relies on
- PocketbaseMessageStore: production store over Pocketbase REST
- InMemoryMessageStore: same semantics, in process
"""

from .base import (
    MessageNotFoundError,
    MessageStore,
    MessageTerminalError,
    StoreError,
    ThreadNotFoundError,
    make_title,
)
from .memory import InMemoryMessageStore
from .pocketbase import PocketbaseMessageStore

__all__ = [
    "MessageStore",
    "StoreError",
    "MessageNotFoundError",
    "MessageTerminalError",
    "ThreadNotFoundError",
    "make_title",
    "InMemoryMessageStore",
    "PocketbaseMessageStore",
]
