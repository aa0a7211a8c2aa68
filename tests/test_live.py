import asyncio

import pytest

from app.models import OrderStatus
from app.schemas import OrderItemCreate
from app.services import projections
from app.services.changefeed import (
    ChangeEvent,
    ChangeType,
    InMemoryChangeFeed,
    Subscription,
    get_change_feed,
    reset_change_feed,
)
from app.services.live import LiveView


def order_event(row_id="o-1", change_type=ChangeType.UPDATE):
    return ChangeEvent("orders", change_type, row_id)


# =============================================================================
# CHANGE FEED
# =============================================================================

def test_event_json():
    event = order_event("abc", ChangeType.INSERT)
    assert ChangeEvent.from_json(event.to_json()) == event


def test_event_matching():
    event = order_event("abc")
    assert event.matches("orders")
    assert event.matches("orders", "abc")
    assert not event.matches("orders", "xyz")
    assert not event.matches("dishes")


async def test_publish_reaches_every_matching_subscriber(feed):
    everything = await feed.subscribe("orders")
    mine = await feed.subscribe("orders", "o-1")
    other = await feed.subscribe("orders", "o-2")

    await feed.publish(order_event("o-1"))

    assert (await everything.get(timeout=1)).row_id == "o-1"
    assert (await mine.get(timeout=1)).row_id == "o-1"
    assert await other.get(timeout=0.05) is None


async def test_closed_subscription_is_released(feed):
    subscription = await feed.subscribe("orders")
    assert feed.subscriber_count == 1

    await subscription.close()
    await subscription.close()

    assert feed.subscriber_count == 0
    assert subscription.closed
    assert not subscription.deliver(order_event())


async def test_close_wakes_a_blocked_reader(feed):
    subscription = await feed.subscribe("orders")
    reader = asyncio.create_task(subscription.get())
    await asyncio.sleep(0)

    await subscription.close()

    assert await asyncio.wait_for(reader, timeout=1) is None


async def test_full_subscription_drops_extra_events():
    subscription = Subscription("orders", max_pending=2)
    assert subscription.deliver(order_event("a"))
    assert subscription.deliver(order_event("b"))
    assert not subscription.deliver(order_event("c"))
    assert subscription.drain() == 2


async def test_subscription_iterates_until_closed():
    feed = InMemoryChangeFeed()
    subscription = await feed.subscribe("orders")
    for row_id in ("a", "b"):
        await feed.publish(order_event(row_id))
    await subscription.close()

    assert [event.row_id async for event in subscription] == ["a", "b"]


async def test_feed_close_releases_everything():
    feed = InMemoryChangeFeed()
    first = await feed.subscribe("orders")
    second = await feed.subscribe("orders", "x")

    await feed.close()

    assert first.closed and second.closed
    assert feed.subscriber_count == 0
    assert await feed.health_check()


# =============================================================================
# LIVE VIEW
# =============================================================================

class Store:
    """Stands in for the database: the fetcher always reads the latest state."""

    def __init__(self):
        self.status = "pending"
        self.reads = 0

    async def fetch(self):
        self.reads += 1
        return {"status": self.status}


async def test_view_fetches_once_until_invalidated(feed):
    store = Store()
    async with LiveView("test", store.fetch, feed) as view:
        assert await view.get() == {"status": "pending"}
        assert await view.get() == {"status": "pending"}
        assert store.reads == 1

        store.status = "preparing"
        await feed.publish(order_event())
        assert await view.wait_for_change()
        assert view.stale
        assert await view.get() == {"status": "preparing"}
        assert view.fetch_count == 2


async def test_burst_of_events_costs_one_refetch(feed):
    store = Store()
    async with LiveView("test", store.fetch, feed) as view:
        await view.get()
        for _ in range(5):
            await feed.publish(order_event())

        assert await view.wait_for_change()
        await view.get()
        assert store.reads == 2

        # Nothing left queued
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(view.wait_for_change(), timeout=0.05)


async def test_view_always_shows_the_store_whatever_the_event_order(feed):
    store = Store()
    async with LiveView("test", store.fetch, feed) as view:
        await view.get()

        # The last write is "ready"; notifications arrive shuffled
        store.status = "ready"
        await feed.publish(order_event(change_type=ChangeType.UPDATE))
        await feed.publish(order_event(change_type=ChangeType.INSERT))

        await view.wait_for_change()
        assert await view.get() == {"status": "ready"}


async def test_poll_interval_refreshes_without_events(feed):
    store = Store()
    async with LiveView("test", store.fetch, feed, poll_interval=0.01) as view:
        await view.get()
        store.status = "completed"

        assert await view.wait_for_change()
        assert await view.get() == {"status": "completed"}


async def test_row_view_ignores_other_orders(feed):
    store = Store()
    async with LiveView("guest", store.fetch, feed, row_id="mine") as view:
        await view.get()
        await feed.publish(order_event("someone-else"))

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(view.wait_for_change(), timeout=0.05)

        await feed.publish(order_event("mine"))
        assert await asyncio.wait_for(view.wait_for_change(), timeout=1)


async def test_closed_view_stops_and_discards_late_results(feed):
    async def fetch_then_close():
        await view.close()
        return {"status": "late"}

    view = await LiveView("test", fetch_then_close, feed).open()

    assert await view.refresh() is None
    assert view.fetch_count == 0
    assert not await view.wait_for_change()
    assert feed.subscriber_count == 0


async def test_close_unblocks_a_waiting_view(feed):
    store = Store()
    view = await LiveView("test", store.fetch, feed).open()
    waiter = asyncio.create_task(view.wait_for_change())
    await asyncio.sleep(0)

    await view.close()

    assert await asyncio.wait_for(waiter, timeout=1) is False


async def test_stream_yields_a_snapshot_per_change(feed):
    store = Store()
    view = LiveView("test", store.fetch, feed)
    snapshots = []

    async for snapshot in view.stream():
        snapshots.append(snapshot["status"])
        if len(snapshots) == 1:
            store.status = "preparing"
            await feed.publish(order_event())
        else:
            await view.close()

    assert snapshots == ["pending", "preparing"]


async def test_kitchen_view_follows_new_orders(orders, menu, feed, session_maker):
    async def fetch_kitchen():
        async with session_maker() as session:
            return await projections.kitchen_view(session)

    async with LiveView("kitchen", fetch_kitchen, feed) as view:
        assert (await view.get()).active_count == 0

        order = await orders.create_order("4", [OrderItemCreate(dish_id=menu["burger"].id, quantity=1)])
        assert await asyncio.wait_for(view.wait_for_change(), timeout=1)
        kitchen = await view.get()
        assert [o.id for o in kitchen.active] == [order.id]

        await orders.update_status(order.id, OrderStatus.PREPARING)
        await view.wait_for_change()
        assert (await view.get()).active[0].status.value == "preparing"


def test_development_mode_uses_the_in_process_feed():
    reset_change_feed()
    try:
        feed = get_change_feed()
        assert isinstance(feed, InMemoryChangeFeed)
        assert get_change_feed() is feed
    finally:
        reset_change_feed()
