"""
Streaming Services Module.

Provides the resumable token-streaming pipeline.

Architecture:
- StreamExecutor: Streams text fragments from the provider via PydanticAI
- StreamProducer: Persists content and publishes notifications per fragment
- StreamNotifier: Publishes notifications on the message's bus topic
- StreamingOrchestrator: Runs one leased producer task per message
- StreamGateway: Bootstraps a viewer from the store and relays the bus

Usage:
    from streamrelay.services.streaming import (
        StreamingOrchestrator,
        StreamRequest,
    )

    orchestrator = StreamingOrchestrator(executor, producer, leases)
    await orchestrator.start_stream(request)
"""

from .types import (
    ConversationTurn,
    StreamRequest,
    StreamChunk,
    StreamResult,
    StreamState,
)
from .executor import StreamExecutor, streaming_dedent
from .notifier import StreamNotifier
from .producer import StreamProducer
from .orchestrator import StreamingOrchestrator
from .gateway import Heartbeat, StreamGateway

__all__ = [
    # Types
    "ConversationTurn",
    "StreamRequest",
    "StreamChunk",
    "StreamResult",
    "StreamState",
    # Services
    "StreamExecutor",
    "StreamNotifier",
    "StreamProducer",
    "StreamingOrchestrator",
    "StreamGateway",
    "Heartbeat",
    "streaming_dedent",
]
