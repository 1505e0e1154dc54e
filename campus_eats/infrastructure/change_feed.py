import asyncio
import json
import logging
from typing import List, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from campus_eats.core.error_classifier import normalize
from campus_eats.core.retry import RetryPolicy, with_retry
from campus_eats.domain.errors import ConfigurationError, MarketplaceError
from campus_eats.interfaces.IChangeFeed import ChangeEvent, ChangeFilter, IChangeFeed, Subscription

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "changes:"

_CLOSED = object()


# ---------------------------------------------------------
# IN-PROCESS FEED (single process / tests / Redis fallback)
# ---------------------------------------------------------
class _QueueSubscription(Subscription):

    def __init__(self, feed: "InMemoryChangeFeed", table: str, change_filter: Optional[ChangeFilter]):
        self.feed = feed
        self.table = table
        self.change_filter = change_filter
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def offer(self, event: ChangeEvent) -> None:
        if self.closed or event.table != self.table:
            return
        if self.change_filter and not self.change_filter.matches(event.record):
            return
        self.queue.put_nowait(event)

    async def __anext__(self) -> ChangeEvent:
        if self.closed and self.queue.empty():
            raise StopAsyncIteration
        item = await self.queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.feed._detach(self)
        self.queue.put_nowait(_CLOSED)


class InMemoryChangeFeed(IChangeFeed):

    def __init__(self):
        self._subscriptions: List[_QueueSubscription] = []

    async def publish(self, event: ChangeEvent) -> None:
        # Snapshot: a subscriber may close while we deliver
        for subscription in list(self._subscriptions):
            subscription.offer(event)

    async def subscribe(self, table: str, change_filter: Optional[ChangeFilter] = None) -> Subscription:
        subscription = _QueueSubscription(self, table, change_filter)
        self._subscriptions.append(subscription)
        return subscription

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _detach(self, subscription: _QueueSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.close()


# ---------------------------------------------------------
# REDIS PUB/SUB FEED (cross-process convergence)
# ---------------------------------------------------------
class _RedisSubscription(Subscription):

    def __init__(self, pubsub, change_filter: Optional[ChangeFilter]):
        self.pubsub = pubsub
        self.change_filter = change_filter
        self.closed = False

    async def __anext__(self) -> ChangeEvent:
        while not self.closed:
            try:
                message = await self.pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except RedisError as e:
                raise normalize(e) from e
            if message is None or message.get("type") != "message":
                continue
            try:
                event = ChangeEvent.from_json(message["data"])
            except (json.JSONDecodeError, KeyError, TypeError) as e:
                logger.warning(f"⚠️ ChangeFeed: dropped malformed message ({e})")
                continue
            if self.change_filter and not self.change_filter.matches(event.record):
                continue
            return event
        raise StopAsyncIteration

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self.pubsub.unsubscribe()
            await self.pubsub.aclose()
        except RedisError as e:
            logger.warning(f"⚠️ Redis unsubscribe failed: {e}")


class RedisChangeFeed(IChangeFeed):

    def __init__(self, client: aioredis.Redis):
        self.redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisChangeFeed":
        return cls(aioredis.from_url(url, decode_responses=True, socket_connect_timeout=1))

    async def ping(self) -> None:
        await self.redis.ping()

    async def publish(self, event: ChangeEvent) -> None:
        try:
            await self.redis.publish(CHANNEL_PREFIX + event.table, event.to_json())
        except RedisError as e:
            raise normalize(e) from e

    async def subscribe(self, table: str, change_filter: Optional[ChangeFilter] = None) -> Subscription:
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(CHANNEL_PREFIX + table)
        except RedisError as e:
            raise normalize(e) from e
        return _RedisSubscription(pubsub, change_filter)

    async def close(self) -> None:
        await self.redis.aclose()


async def publish_after_commit(feed: IChangeFeed, event: ChangeEvent, policy: Optional[RetryPolicy] = None) -> bool:
    """
    Announce a write that has already committed.
    The write stands either way, so a feed that stays down is logged, not raised;
    subscribers re-query on the next event or poll.
    """
    try:
        await with_retry(lambda: feed.publish(event), policy)
        return True
    except MarketplaceError as e:
        logger.error(f"❌ ChangeFeed: {event.op} on {event.table} {event.record.get('id')} not published: {e}")
        return False


async def build_change_feed(redis_url: Optional[str]) -> Tuple[IChangeFeed, str]:
    """Prefer Redis; fall back to the in-process feed if it is absent or unreachable."""
    if not redis_url:
        logger.info("ℹ️ ChangeFeed: REDIS_URL not set, using in-process feed.")
        return InMemoryChangeFeed(), "memory"
    try:
        feed = RedisChangeFeed.from_url(redis_url)
    except ValueError as e:
        raise ConfigurationError(f"REDIS_URL is invalid: {e}") from e
    try:
        await feed.ping()
        logger.info("✅ ChangeFeed: Connected to Redis.")
        return feed, "redis"
    except RedisError as e:
        logger.warning(f"⚠️ ChangeFeed: Redis unreachable ({e}). Using in-process fallback.")
        await feed.close()
        return InMemoryChangeFeed(), "memory"
