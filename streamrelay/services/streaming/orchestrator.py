"""
Streaming Orchestrator.

Runs one producer task per in-flight message.
Single Responsibility: Only scheduling and lease bookkeeping, delegates work to
executor and producer.
"""
import asyncio
import logging
import os
import socket
import uuid
from typing import Optional, Protocol

from streamrelay.errors import ProducerConflictError
from streamrelay.services.lease import LeaseManager

from .producer import StreamProducer
from .types import StreamRequest, StreamResult

logger = logging.getLogger(__name__)


class GenerationSource(Protocol):
    """Anything that can stream text fragments for a request."""

    def execute(self, request: StreamRequest): ...


class StreamingOrchestrator:
    """
    Orchestrates producers outside the request that started them.

    Workflow:
    1. Entry point creates the assistant message and calls start_stream()
    2. Orchestrator takes the message lease and schedules a producer task
    3. start_stream() returns immediately; the producer persists and publishes
    4. Lease is extended every ``renew_interval`` while the producer runs
       and released after the terminal transition

    Viewers never cancel producers; only shutdown() does.
    """

    def __init__(
        self,
        executor: GenerationSource,
        producer: StreamProducer,
        leases: LeaseManager,
        lease_ttl: int = 600,
        renew_interval: Optional[float] = None,
    ):
        self._executor = executor
        self._producer = producer
        self._leases = leases
        self._lease_ttl = lease_ttl
        self._renew_interval = renew_interval if renew_interval is not None else lease_ttl / 3
        self._holder = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"
        self._active_streams: dict[str, asyncio.Task] = {}

    async def start_stream(self, request: StreamRequest) -> None:
        """
        Start a producer for ``request.message_id`` in a background task.

        Non-blocking - returns immediately after scheduling.

        Raises:
            ProducerConflictError: a producer already owns this message
        """
        message_id = request.message_id
        if message_id in self._active_streams:
            raise ProducerConflictError(message_id)

        if not await self._leases.acquire(message_id, self._holder, self._lease_ttl):
            raise ProducerConflictError(message_id)

        task = asyncio.create_task(
            self._run_stream(request),
            name=f"stream-{message_id}",
        )
        self._active_streams[message_id] = task
        logger.info("Started stream: %s", message_id)

    def is_active(self, message_id: str) -> bool:
        """Check if a producer is currently running for the message."""
        return message_id in self._active_streams

    @property
    def active_count(self) -> int:
        """Number of currently active streams."""
        return len(self._active_streams)

    async def wait(self, message_id: str) -> Optional[StreamResult]:
        """Wait for an active producer to finish. None if not active."""
        task = self._active_streams.get(message_id)
        if task is None:
            return None
        return await asyncio.shield(task)

    async def shutdown(self) -> None:
        """Cancel remaining producers; each finalises its message as interrupted."""
        tasks = list(self._active_streams.values())
        if not tasks:
            return
        logger.info("Cancelling %d active streams", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_stream(self, request: StreamRequest) -> StreamResult:
        keepalive = asyncio.create_task(
            self._keep_lease(request.message_id),
            name=f"lease-{request.message_id}",
        )
        try:
            return await self._producer.run(request, self._executor.execute(request))
        finally:
            keepalive.cancel()
            try:
                await keepalive
            except asyncio.CancelledError:
                pass
            self._active_streams.pop(request.message_id, None)
            try:
                await self._leases.release(request.message_id, self._holder)
            except Exception as e:
                logger.warning("Failed to release lease for %s: %s", request.message_id, e)

    async def _keep_lease(self, message_id: str) -> None:
        while True:
            await asyncio.sleep(self._renew_interval)
            try:
                renewed = await self._leases.extend(message_id, self._holder, self._lease_ttl)
            except Exception as e:
                logger.warning("Failed to renew lease for %s: %s", message_id, e)
                continue
            if not renewed:
                logger.error("Lease for %s was lost, another producer may take over", message_id)
                return
