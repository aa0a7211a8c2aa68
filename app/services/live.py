"""
Live Views

A LiveView keeps one projection fresh for one long-lived consumer (a kitchen
screen, a caisse, a guest's status page).

    - A change notification only marks the cached snapshot stale.
    - The next read re-fetches the whole projection from the store and
      replaces the cache. Event payloads are never merged.
    - An optional poll interval triggers the same re-fetch, so a missed
      notification costs at most one interval and a duplicate costs one
      extra read.

Because every refresh is a full authoritative read, a viewer can never show
statuses out of order, whatever order the notifications arrive in.

Usage:
    async with LiveView("kitchen", fetch_kitchen, feed) as view:
        async for snapshot in view.stream():
            await websocket.send_json(snapshot)
"""

import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from app.services.changefeed import BaseChangeFeed, Subscription

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]


class LiveView:
    """
    Cache-invalidate-and-refetch wrapper around a projection.

    Attributes:
        name: Label used in logs
        table: Watched table
        row_id: Optional row filter (single-order views)
        poll_interval: Seconds between forced refreshes, None for push only
        fetch_count: Number of completed re-fetches
    """

    def __init__(
        self,
        name: str,
        fetcher: Fetcher,
        feed: BaseChangeFeed,
        table: str = "orders",
        row_id: Optional[str] = None,
        poll_interval: Optional[float] = None,
    ):
        self.name = name
        self.table = table
        self.row_id = row_id
        self.poll_interval = poll_interval
        self.fetch_count = 0
        self._fetcher = fetcher
        self._feed = feed
        self._subscription: Optional[Subscription] = None
        self._snapshot: Any = None
        self._stale = True
        self._closed = False

    @property
    def stale(self) -> bool:
        return self._stale

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> "LiveView":
        """Subscribe to the change feed."""
        if self._subscription is None and not self._closed:
            self._subscription = await self._feed.subscribe(self.table, self.row_id)
            logger.info(
                f"LiveView '{self.name}' subscribed to {self.table}"
                + (f"/{self.row_id}" if self.row_id else "")
            )
        return self

    async def close(self) -> None:
        """Release the subscription. In-flight fetch results are discarded."""
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None
        logger.info(f"LiveView '{self.name}' closed after {self.fetch_count} fetch(es)")

    async def __aenter__(self) -> "LiveView":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def invalidate(self) -> None:
        self._stale = True

    async def refresh(self) -> Any:
        """Re-read the projection and replace the cache."""
        snapshot = await self._fetcher()
        if self._closed:
            return None
        self._snapshot = snapshot
        self._stale = False
        self.fetch_count += 1
        return snapshot

    async def get(self) -> Any:
        """Cached snapshot, re-fetched first if stale."""
        if self._stale:
            return await self.refresh()
        return self._snapshot

    async def wait_for_change(self) -> bool:
        """
        Block until a notification arrives or the poll interval elapses.

        Either way the view is marked stale. Returns False once closed.
        """
        if self._closed or self._subscription is None:
            return False

        event = await self._subscription.get(timeout=self.poll_interval)
        if self._closed or self._subscription is None or self._subscription.closed:
            return False

        if event is not None:
            # A burst of events needs a single re-fetch
            extra = self._subscription.drain()
            logger.debug(
                f"LiveView '{self.name}' invalidated by {event.change_type.value} "
                f"{event.table}/{event.row_id} (+{extra} coalesced)"
            )
        self.invalidate()
        return True

    async def stream(self) -> AsyncIterator[Any]:
        """Yield the current snapshot, then a fresh one after every change."""
        await self.open()
        snapshot = await self.get()
        if self._closed:
            return
        yield snapshot
        while await self.wait_for_change():
            snapshot = await self.get()
            if self._closed:
                return
            yield snapshot
