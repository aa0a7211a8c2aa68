"""
Change Feed Abstract Base Class

Row-change notifications for watched tables. An event only says "this row
of this table changed"; consumers treat it as an invalidation hint and
re-read the store, they never apply it as a delta.

Both InMemoryChangeFeed and RedisChangeFeed hand out the same Subscription
type, so live views do not care which one is active.
"""

import asyncio
import inspect
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """
    One row change.

    Attributes:
        table: Table name (e.g. "orders")
        change_type: INSERT, UPDATE or DELETE
        row_id: Primary key of the changed row, if known
    """
    table: str
    change_type: ChangeType
    row_id: Optional[str] = None

    def matches(self, table: str, row_id: Optional[str] = None) -> bool:
        """True when this event concerns the given table (and row, if set)."""
        if self.table != table:
            return False
        return row_id is None or self.row_id == row_id

    def to_json(self) -> str:
        return json.dumps({
            "table": self.table,
            "change_type": self.change_type.value,
            "row_id": self.row_id,
        })

    @classmethod
    def from_json(cls, raw: str) -> "ChangeEvent":
        data = json.loads(raw)
        return cls(
            table=data["table"],
            change_type=ChangeType(data["change_type"]),
            row_id=data.get("row_id"),
        )


class Subscription:
    """
    A filtered stream of change events.

    Events are buffered in a bounded queue. When the buffer is full further
    events are dropped: one pending event already forces a re-fetch, so
    losing the rest changes nothing.
    """

    def __init__(
        self,
        table: str,
        row_id: Optional[str] = None,
        on_close: Optional[Callable[["Subscription"], Any]] = None,
        max_pending: int = 100,
    ):
        self.table = table
        self.row_id = row_id
        self._on_close = on_close
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def accepts(self, event: ChangeEvent) -> bool:
        return event.matches(self.table, self.row_id)

    def deliver(self, event: ChangeEvent) -> bool:
        """Queue an event if it matches. Returns True when queued."""
        if self._closed or not self.accepts(event):
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.debug(f"Subscription {self.table}/{self.row_id} full, event dropped")
            return False
        return True

    def drain(self) -> int:
        """Discard queued events. Returns how many were discarded."""
        count = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return count
            if item is None:
                # close() sentinel, keep it for the waiting reader
                self._queue.put_nowait(None)
                return count
            count += 1

    async def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """
        Wait for the next event.

        Returns None on timeout and once the subscription is closed.
        """
        if self._closed and self._queue.empty():
            return None
        try:
            if timeout is None:
                return await self._queue.get()
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def close(self) -> None:
        """Release the subscription. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        # Wake up a reader blocked in get()
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            self.drain()
            self._queue.put_nowait(None)
        if self._on_close is not None:
            result = self._on_close(self)
            if inspect.isawaitable(result):
                await result

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class BaseChangeFeed(ABC):
    """Abstract base class for change feeds."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None:
        """Announce a row change to every matching subscriber."""
        pass

    @abstractmethod
    async def subscribe(self, table: str, row_id: Optional[str] = None) -> Subscription:
        """Open a subscription on a table, optionally narrowed to one row."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check feed connectivity."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release every subscription and connection."""
        pass
