"""
Notification Bus.

Topic-per-message publish/subscribe with no persistence and no delivery
guarantee. A subscriber only sees payloads published after its
subscription is live; the store is the source of truth for anything older.
"""
import asyncio
import json
import logging
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, AsyncIterator, Optional, Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)

TOPIC_PREFIX = "message:"


def topic_for(message_id: str) -> str:
    """Bus topic carrying notifications for one message."""
    return f"{TOPIC_PREFIX}{message_id}"


class Subscription(Protocol):
    """Live feed of payloads for one topic."""

    topic: str

    async def next_payload(self, timeout: float) -> Optional[dict[str, Any]]:
        """Next payload, or None if nothing arrived within timeout seconds."""
        ...


class NotificationBus(Protocol):
    async def publish(self, topic: str, payload: dict[str, Any]) -> None: ...

    def subscribe(self, topic: str) -> AbstractAsyncContextManager[Subscription]: ...

    async def health_check(self) -> bool: ...

    async def close(self) -> None: ...


# ==================== In-process bus ====================


class _QueueSubscription:
    def __init__(self, topic: str):
        self.topic = topic
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    async def next_payload(self, timeout: float) -> Optional[dict[str, Any]]:
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None


class InMemoryNotificationBus:
    """
    Single-process bus.

    Every subscriber gets its own unbounded queue so a slow viewer never
    blocks the publisher.
    """

    def __init__(self):
        self._subscribers: dict[str, set[_QueueSubscription]] = {}

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        subscribers = self._subscribers.get(topic, ())
        for subscription in list(subscribers):
            subscription.queue.put_nowait(payload)
        logger.debug("Published to %s (%d subscribers)", topic, len(subscribers))

    @asynccontextmanager
    async def subscribe(self, topic: str) -> AsyncIterator[_QueueSubscription]:
        subscription = _QueueSubscription(topic)
        self._subscribers.setdefault(topic, set()).add(subscription)
        try:
            yield subscription
        finally:
            subscribers = self._subscribers.get(topic)
            if subscribers is not None:
                subscribers.discard(subscription)
                if not subscribers:
                    del self._subscribers[topic]

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        self._subscribers.clear()


# ==================== Redis bus ====================


class _RedisSubscription:
    def __init__(self, topic: str, pubsub: Any):
        self.topic = topic
        self._pubsub = pubsub

    async def next_payload(self, timeout: float) -> Optional[dict[str, Any]]:
        message = await self._pubsub.get_message(
            ignore_subscribe_messages=True,
            timeout=timeout,
        )
        if message is None or message.get("type") != "message":
            return None

        try:
            return json.loads(message["data"])
        except (TypeError, ValueError) as e:
            logger.warning("Dropping malformed payload on %s: %s", self.topic, e)
            return None


class RedisNotificationBus:
    """
    Redis pub/sub bus.

    Each subscription owns a PubSub connection from the shared pool, so
    unsubscribing one viewer never affects another watching the same topic.
    """

    def __init__(self, client: "redis.Redis", subscribe_timeout: float = 5.0):
        self._redis = client
        self._subscribe_timeout = subscribe_timeout

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        """Fire-and-forget publish. Failures are logged, never raised."""
        try:
            receivers = await self._redis.publish(topic, json.dumps(payload))
            logger.debug("Published to %s (%s receivers)", topic, receivers)
        except Exception as e:
            logger.warning("Failed to publish to %s: %s", topic, e)

    @asynccontextmanager
    async def subscribe(self, topic: str) -> AsyncIterator[_RedisSubscription]:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(topic)
            await self._wait_until_subscribed(pubsub, topic)
            yield _RedisSubscription(topic, pubsub)
        finally:
            try:
                await pubsub.unsubscribe(topic)
            except Exception as e:
                logger.debug("Failed to unsubscribe from %s: %s", topic, e)
            await pubsub.aclose()

    async def _wait_until_subscribed(self, pubsub: Any, topic: str) -> None:
        """
        Block until Redis confirms the subscription.

        Payloads published after the confirmation are guaranteed to reach us.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._subscribe_timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ConnectionError(f"Timed out subscribing to {topic}")
            message = await pubsub.get_message(timeout=remaining)
            if message and message.get("type") == "subscribe":
                return

    async def health_check(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception as e:
            logger.warning("Redis health check failed: %s", e)
            return False

    async def close(self) -> None:
        await self._redis.aclose()
