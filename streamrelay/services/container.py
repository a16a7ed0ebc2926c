"""
Service wiring.

Builds the store, bus, leases and streaming pipeline from settings and
tears them down in reverse order.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis

from streamrelay.config import Settings
from streamrelay.services.bus import (
    InMemoryNotificationBus,
    NotificationBus,
    RedisNotificationBus,
)
from streamrelay.services.chat import ChatService, CredentialLookup
from streamrelay.services.connection_manager import ConnectionManager
from streamrelay.services.lease import (
    InMemoryLeaseManager,
    LeaseManager,
    RedisLeaseManager,
)
from streamrelay.services.pocketbase import PocketbaseService
from streamrelay.services.store import (
    InMemoryMessageStore,
    MessageStore,
    PocketbaseMessageStore,
)
from streamrelay.services.streaming import (
    StreamExecutor,
    StreamGateway,
    StreamingOrchestrator,
    StreamNotifier,
    StreamProducer,
)
from streamrelay.services.streaming.orchestrator import GenerationSource

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the HTTP layer needs, shared for the app's lifetime."""

    store: MessageStore
    bus: NotificationBus
    leases: LeaseManager
    orchestrator: StreamingOrchestrator
    gateway: StreamGateway
    chat: ChatService
    connections: ConnectionManager

    async def close(self) -> None:
        await self.orchestrator.shutdown()
        await self.bus.close()
        await self.store.close()


def build_services(
    settings: Settings,
    store: Optional[MessageStore] = None,
    bus: Optional[NotificationBus] = None,
    leases: Optional[LeaseManager] = None,
    executor: Optional[GenerationSource] = None,
    credentials: Optional[CredentialLookup] = None,
) -> Services:
    """
    Assemble the streaming pipeline.

    Any collaborator passed in explicitly replaces the one the settings
    would select, which is how tests run without Pocketbase, Redis or a
    real provider.
    """
    if store is None:
        store = _build_store(settings)

    if bus is None or leases is None:
        if settings.bus_backend == "redis":
            client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            bus = bus or RedisNotificationBus(client)
            leases = leases or RedisLeaseManager(client)
        else:
            bus = bus or InMemoryNotificationBus()
            leases = leases or InMemoryLeaseManager()

    logger.info(
        "Services: store=%s, bus=%s, leases=%s",
        type(store).__name__,
        type(bus).__name__,
        type(leases).__name__,
    )

    producer = StreamProducer(
        store,
        StreamNotifier(bus),
        persist_interval=settings.persist_interval,
    )
    orchestrator = StreamingOrchestrator(
        executor or StreamExecutor(dedent=settings.dedent_output),
        producer,
        leases,
        lease_ttl=settings.lease_ttl,
    )
    connections = ConnectionManager()
    gateway = StreamGateway(
        store,
        bus,
        connections,
        heartbeat_interval=settings.heartbeat_interval,
    )
    chat = ChatService(store, orchestrator, credentials or settings.get_api_key)

    return Services(
        store=store,
        bus=bus,
        leases=leases,
        orchestrator=orchestrator,
        gateway=gateway,
        chat=chat,
        connections=connections,
    )


def _build_store(settings: Settings) -> MessageStore:
    if settings.store_backend == "memory":
        return InMemoryMessageStore()
    client = PocketbaseService(
        settings.pocketbase_url,
        admin_email=settings.pocketbase_admin_email,
        admin_password=settings.pocketbase_admin_password,
    )
    return PocketbaseMessageStore(client)
