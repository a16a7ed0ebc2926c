"""
Producer Leases.

At most one producer may write a given message. A producer must hold the
message's lease before its first write and gives it up after the
terminal transition. Leases expire so a crashed process cannot block a
message forever; a live producer keeps extending its lease.
"""
import asyncio
import logging
from typing import Optional, Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)

LEASE_PREFIX = "lease:message:"

# Delete the key only if it still belongs to the caller
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

# Push the expiry forward only while the caller still holds the key
_EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
end
return 0
"""


class LeaseManager(Protocol):
    async def acquire(self, message_id: str, holder: str, ttl: int) -> bool: ...

    async def extend(self, message_id: str, holder: str, ttl: int) -> bool: ...

    async def release(self, message_id: str, holder: str) -> bool: ...


class InMemoryLeaseManager:
    """Process-local leases keyed by message id."""

    def __init__(self):
        self._holders: dict[str, tuple[str, float]] = {}

    async def acquire(self, message_id: str, holder: str, ttl: int) -> bool:
        now = asyncio.get_running_loop().time()
        current = self._holders.get(message_id)
        if current and current[1] > now and current[0] != holder:
            return False
        self._holders[message_id] = (holder, now + ttl)
        return True

    async def extend(self, message_id: str, holder: str, ttl: int) -> bool:
        now = asyncio.get_running_loop().time()
        current = self._holders.get(message_id)
        if not current or current[0] != holder or current[1] <= now:
            return False
        self._holders[message_id] = (holder, now + ttl)
        return True

    async def release(self, message_id: str, holder: str) -> bool:
        current = self._holders.get(message_id)
        if not current or current[0] != holder:
            return False
        del self._holders[message_id]
        return True

    def holder_of(self, message_id: str) -> Optional[str]:
        current = self._holders.get(message_id)
        return current[0] if current else None


class RedisLeaseManager:
    """Leases as Redis keys set with NX and an expiry."""

    def __init__(self, client: "redis.Redis"):
        self._redis = client
        self._release = client.register_script(_RELEASE_SCRIPT)
        self._extend = client.register_script(_EXTEND_SCRIPT)

    async def acquire(self, message_id: str, holder: str, ttl: int) -> bool:
        acquired = await self._redis.set(f"{LEASE_PREFIX}{message_id}", holder, nx=True, ex=ttl)
        if not acquired:
            logger.warning("Lease for message %s is held by another producer", message_id)
        return bool(acquired)

    async def extend(self, message_id: str, holder: str, ttl: int) -> bool:
        extended = await self._extend(keys=[f"{LEASE_PREFIX}{message_id}"], args=[holder, ttl])
        return bool(extended)

    async def release(self, message_id: str, holder: str) -> bool:
        released = await self._release(keys=[f"{LEASE_PREFIX}{message_id}"], args=[holder])
        return bool(released)
