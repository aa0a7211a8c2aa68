"""
Change Feed Factory

Returns the in-memory or Redis change feed based on ENV_MODE.

Environment Switching:
    - ENV_MODE=development → InMemoryChangeFeed (single process)
    - ENV_MODE=staging / production → RedisChangeFeed (shared by workers)
"""

import logging
from functools import lru_cache

from app.core.config import get_settings
from app.services.changefeed.base import (
    BaseChangeFeed,
    ChangeEvent,
    ChangeType,
    Subscription,
)
from app.services.changefeed.memory import InMemoryChangeFeed
from app.services.changefeed.redis_feed import RedisChangeFeed

logger = logging.getLogger(__name__)


@lru_cache()
def get_change_feed() -> BaseChangeFeed:
    """Get the configured change feed (one per process)."""
    settings = get_settings()

    if settings.use_redis_feed:
        logger.info(f"Change Feed: Using RedisChangeFeed ({settings.env_mode.value} mode)")
        return RedisChangeFeed()

    logger.info("Change Feed: Using InMemoryChangeFeed (development mode)")
    return InMemoryChangeFeed()


def reset_change_feed() -> None:
    """Clear the cached feed instance."""
    get_change_feed.cache_clear()
    logger.debug("Change feed cache cleared")


__all__ = [
    "get_change_feed",
    "reset_change_feed",
    "BaseChangeFeed",
    "ChangeEvent",
    "ChangeType",
    "Subscription",
    "InMemoryChangeFeed",
    "RedisChangeFeed",
]
