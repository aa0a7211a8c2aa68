"""
Redis Change Feed

Shares row changes between API workers over Redis pub/sub. Each table gets
its own channel ("<prefix>:<table>"); row filtering happens on the
subscriber side, so a per-order guest view listens on the orders channel
and ignores everyone else's events.

Pub/sub is fire-and-forget: an event published while a subscriber is
reconnecting is lost. Views that cannot afford that also poll.
"""

import asyncio
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import get_settings
from app.services.changefeed.base import BaseChangeFeed, ChangeEvent, Subscription

logger = logging.getLogger(__name__)


class RedisChangeFeed(BaseChangeFeed):
    """
    Redis pub/sub change feed.

    Attributes:
        prefix: Channel name prefix
    """

    def __init__(self, url: Optional[str] = None, prefix: Optional[str] = None):
        settings = get_settings()
        self.prefix = prefix or settings.change_feed_prefix
        self._client = aioredis.from_url(url or settings.redis_url, decode_responses=True)
        self._pumps: dict[Subscription, tuple[asyncio.Task, object]] = {}
        logger.info(f"RedisChangeFeed initialized (prefix={self.prefix})")

    @property
    def provider_name(self) -> str:
        return "redis"

    def channel(self, table: str) -> str:
        return f"{self.prefix}:{table}"

    async def publish(self, event: ChangeEvent) -> None:
        receivers = await self._client.publish(self.channel(event.table), event.to_json())
        logger.debug(
            f"{event.change_type.value} {event.table}/{event.row_id} "
            f"published to {receivers} receiver(s)"
        )

    async def subscribe(self, table: str, row_id: Optional[str] = None) -> Subscription:
        pubsub = self._client.pubsub()
        await pubsub.subscribe(self.channel(table))

        subscription = Subscription(table, row_id, on_close=self._release)
        task = asyncio.create_task(self._pump(pubsub, subscription))
        self._pumps[subscription] = (task, pubsub)
        return subscription

    async def _pump(self, pubsub, subscription: Subscription) -> None:
        """Move messages from the Redis connection into the subscription."""
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    event = ChangeEvent.from_json(message["data"])
                except (ValueError, KeyError) as e:
                    logger.warning(f"Ignoring malformed change event: {e}")
                    continue
                subscription.deliver(event)
        except RedisError as e:
            # Views keep their polling; the subscription just stops pushing
            logger.error(f"Change feed connection lost for {subscription.table}: {e}")

    async def _release(self, subscription: Subscription) -> None:
        entry = self._pumps.pop(subscription, None)
        if entry is None:
            return
        task, pubsub = entry
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        try:
            await pubsub.unsubscribe()
            await pubsub.aclose()
        except RedisError as e:
            logger.warning(f"Error releasing change feed subscription: {e}")

    async def health_check(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.error(f"Redis change feed health check failed: {e}")
            return False

    async def close(self) -> None:
        for subscription in list(self._pumps):
            await subscription.close()
        await self._client.aclose()
