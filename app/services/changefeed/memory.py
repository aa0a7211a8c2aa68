"""
In-Memory Change Feed

Fans events out to subscribers living in the same process. Used in
development mode and in tests; with several API workers use the Redis feed.
"""

import logging
from typing import Optional

from app.services.changefeed.base import BaseChangeFeed, ChangeEvent, Subscription

logger = logging.getLogger(__name__)


class InMemoryChangeFeed(BaseChangeFeed):
    """Single-process change feed."""

    def __init__(self, max_pending: int = 100):
        self.max_pending = max_pending
        self._subscriptions: set[Subscription] = set()
        logger.info("InMemoryChangeFeed initialized")

    @property
    def provider_name(self) -> str:
        return "memory"

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: ChangeEvent) -> None:
        delivered = sum(1 for sub in list(self._subscriptions) if sub.deliver(event))
        logger.debug(
            f"{event.change_type.value} {event.table}/{event.row_id} "
            f"delivered to {delivered} subscriber(s)"
        )

    async def subscribe(self, table: str, row_id: Optional[str] = None) -> Subscription:
        subscription = Subscription(
            table,
            row_id,
            on_close=self._discard,
            max_pending=self.max_pending,
        )
        self._subscriptions.add(subscription)
        return subscription

    def _discard(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.close()
        self._subscriptions.clear()
