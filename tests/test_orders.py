import pytest
from sqlalchemy import event, func, select
from sqlalchemy.exc import OperationalError

from app.core.errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from app.models import Order, OrderItem, OrderStatus
from app.schemas import OrderItemCreate
from app.services.changefeed import ChangeType


def line(dish, quantity=1, notes=None):
    return OrderItemCreate(dish_id=dish.id, quantity=quantity, notes=notes)


async def count_rows(session_maker, model) -> int:
    async with session_maker() as session:
        return await session.scalar(select(func.count()).select_from(model))


# =============================================================================
# CREATION
# =============================================================================

async def test_table_order_is_priced_from_the_menu(orders, menu):
    order = await orders.create_order(
        " 12 ",
        [line(menu["burger"], 2), line(menu["salade"], 1, notes="sans oignons")],
        customer_message="Anniversaire",
    )

    assert order.table_number == "12"
    assert order.total_price == pytest.approx(25.0)
    assert order.status == OrderStatus.PENDING
    assert not order.is_paid
    assert not order.is_archived
    assert order.customer_message == "Anniversaire"
    assert [(i.dish.name, i.quantity) for i in order.items] == [("Burger", 2), ("Salade", 1)]
    assert order.items[1].notes == "sans oignons"


async def test_total_is_a_snapshot(orders, menu, db):
    order = await orders.create_order("3", [line(menu["soda"], 4)])

    menu["soda"].price_eur = 3.0
    await db.commit()

    reloaded = await orders.get_order(order.id)
    assert reloaded.total_price == pytest.approx(10.0)


async def test_creation_publishes_insert(orders, menu, feed):
    subscription = await feed.subscribe("orders")
    order = await orders.create_order("7", [line(menu["burger"])])

    event_ = await subscription.get(timeout=1)
    assert event_.change_type == ChangeType.INSERT
    assert event_.row_id == order.id


@pytest.mark.parametrize("table", ["", "   "])
async def test_blank_table_is_rejected(orders, menu, session_maker, table):
    with pytest.raises(ValidationError):
        await orders.create_order(table, [line(menu["burger"])])
    assert await count_rows(session_maker, Order) == 0


async def test_empty_cart_is_rejected(orders, menu, session_maker):
    with pytest.raises(ValidationError):
        await orders.create_order("5", [])
    assert await count_rows(session_maker, Order) == 0


async def test_non_positive_quantity_is_rejected(orders, menu):
    bad = OrderItemCreate.model_construct(dish_id=menu["burger"].id, quantity=0, notes=None)
    with pytest.raises(ValidationError):
        await orders.create_order("5", [bad])


async def test_unknown_dish_is_rejected(orders, menu, session_maker):
    unknown = OrderItemCreate(dish_id="does-not-exist", quantity=1)
    with pytest.raises(ValidationError) as exc:
        await orders.create_order("5", [line(menu["burger"]), unknown])
    assert "does-not-exist" in exc.value.detail
    assert await count_rows(session_maker, Order) == 0


async def test_unavailable_dish_is_rejected(orders, menu, session_maker):
    with pytest.raises(ValidationError):
        await orders.create_order("5", [line(menu["tajine"])])
    assert await count_rows(session_maker, Order) == 0


async def test_failed_item_insert_leaves_nothing_behind(orders, menu, session_maker):
    def fail_insert(mapper, connection, target):
        raise OperationalError("INSERT INTO order_items", {}, Exception("disk I/O error"))

    cart = [line(menu["burger"]), line(menu["soda"])]
    event.listen(OrderItem, "before_insert", fail_insert)
    try:
        with pytest.raises(PersistenceError):
            await orders.create_order("9", cart)
    finally:
        event.remove(OrderItem, "before_insert", fail_insert)

    assert await count_rows(session_maker, Order) == 0
    assert await count_rows(session_maker, OrderItem) == 0

    # The session is still usable afterwards
    order = await orders.create_order("9", cart[1:])
    assert order.total_price == pytest.approx(2.5)


# =============================================================================
# STATUS
# =============================================================================

async def test_status_walks_forward_to_completed(orders, menu, feed):
    order = await orders.create_order("1", [line(menu["burger"])])
    subscription = await feed.subscribe("orders", order.id)

    for target in (OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.COMPLETED):
        order = await orders.update_status(order.id, target)
        assert order.status == target
        event_ = await subscription.get(timeout=1)
        assert event_.change_type == ChangeType.UPDATE


async def test_skipping_a_step_is_rejected(orders, menu):
    order = await orders.create_order("1", [line(menu["burger"])])

    with pytest.raises(InvalidTransitionError):
        await orders.update_status(order.id, OrderStatus.READY)

    assert (await orders.get_order(order.id)).status == OrderStatus.PENDING


async def test_no_move_out_of_completed(orders, menu, advance):
    order = await orders.create_order("1", [line(menu["burger"])])
    await advance(orders, order.id, OrderStatus.COMPLETED)

    for target in OrderStatus:
        with pytest.raises(InvalidTransitionError):
            await orders.update_status(order.id, target)


async def test_unknown_order(orders):
    with pytest.raises(NotFoundError):
        await orders.update_status("missing", OrderStatus.PREPARING)


# =============================================================================
# PAYMENT & MESSAGES
# =============================================================================

async def test_order_must_be_completed_before_payment(orders, menu, advance):
    order = await orders.create_order("2", [line(menu["salade"])])
    await advance(orders, order.id, OrderStatus.READY)

    with pytest.raises(InvalidTransitionError):
        await orders.mark_paid(order.id)
    assert not (await orders.get_order(order.id)).is_paid


async def test_paying_keeps_status_and_is_idempotent(orders, menu, advance):
    order = await orders.create_order("2", [line(menu["salade"])])
    await advance(orders, order.id, OrderStatus.COMPLETED)

    paid, newly_paid = await orders.mark_paid(order.id)
    assert newly_paid
    assert paid.is_paid
    assert paid.paid_at is not None
    assert paid.status == OrderStatus.COMPLETED

    again, newly_paid = await orders.mark_paid(order.id)
    assert not newly_paid
    assert again.is_paid


async def test_additional_message_until_ready(orders, menu, advance):
    order = await orders.create_order("6", [line(menu["burger"])])

    order = await orders.set_additional_message(order.id, "  Plus de sauce  ")
    assert order.additional_message == "Plus de sauce"

    await advance(orders, order.id, OrderStatus.PREPARING)
    order = await orders.set_additional_message(order.id, "Finalement sans sauce")
    assert order.additional_message == "Finalement sans sauce"

    await advance(orders, order.id, OrderStatus.READY)
    with pytest.raises(InvalidTransitionError):
        await orders.set_additional_message(order.id, "Trop tard")
    assert (await orders.get_order(order.id)).additional_message == "Finalement sans sauce"


async def test_blank_message_is_rejected(orders, menu):
    order = await orders.create_order("6", [line(menu["burger"])])
    with pytest.raises(ValidationError):
        await orders.set_additional_message(order.id, "   ")


# =============================================================================
# ARCHIVAL
# =============================================================================

async def test_clear_history_archives_completed_orders_only(orders, menu, advance):
    done = await orders.create_order("1", [line(menu["burger"])])
    await advance(orders, done.id, OrderStatus.COMPLETED)
    cooking = await orders.create_order("2", [line(menu["burger"])])

    assert await orders.archive_completed() == 1
    assert await orders.archive_completed() == 0

    done = await orders.get_order(done.id)
    assert done.is_archived
    assert done.status == OrderStatus.COMPLETED
    assert not (await orders.get_order(cooking.id)).is_archived


async def test_clear_paid_archives_paid_orders_only(orders, menu, advance):
    paid = await orders.create_order("1", [line(menu["burger"])])
    await advance(orders, paid.id, OrderStatus.COMPLETED)
    await orders.mark_paid(paid.id)
    unpaid = await orders.create_order("2", [line(menu["soda"])])
    await advance(orders, unpaid.id, OrderStatus.COMPLETED)

    assert await orders.archive_paid() == 1
    assert (await orders.get_order(paid.id)).is_archived
    assert not (await orders.get_order(unpaid.id)).is_archived


async def test_archived_order_is_frozen(orders, menu, advance):
    order = await orders.create_order("1", [line(menu["burger"])])
    await advance(orders, order.id, OrderStatus.COMPLETED)
    await orders.archive_completed()

    with pytest.raises(InvalidTransitionError):
        await orders.mark_paid(order.id)
    with pytest.raises(InvalidTransitionError):
        await orders.set_additional_message(order.id, "Hello")
    assert (await orders.get_order(order.id)).is_archived


async def test_archival_notifies_each_archived_order(orders, menu, advance, feed):
    first = await orders.create_order("1", [line(menu["burger"])])
    second = await orders.create_order("2", [line(menu["soda"])])
    for order in (first, second):
        await advance(orders, order.id, OrderStatus.COMPLETED)

    subscription = await feed.subscribe("orders")
    await orders.archive_completed()

    seen = {(await subscription.get(timeout=1)).row_id for _ in range(2)}
    assert seen == {first.id, second.id}
