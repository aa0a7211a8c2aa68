"""
View Projections

Read-only views over the orders table, one per consumer:

    Kitchen  active orders (oldest first) + the last completed ones
    Caisse   today's orders split into to-pay / in progress / paid,
             with the day's revenue
    Guest    one order with its items and messages

Archived orders never appear in any of them. Each function re-reads the
store; live views call them again on every change notification.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import Select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import NotFoundError, PersistenceError
from app.models import Order, OrderStatus, RestaurantSettings, utcnow
from app.schemas import (
    CaisseView,
    GuestOrderView,
    KitchenView,
    OrderItemView,
    OrderView,
)
from app.services.lifecycle import ACTIVE_STATUSES, accepts_message, status_label
from app.services.menu import get_restaurant_settings, price_view
from app.services.orders import order_query

logger = logging.getLogger(__name__)

UNKNOWN_DISH = "Unknown dish"


async def load_orders(db: AsyncSession, statement: Select, what: str) -> list[Order]:
    """
    Run an order query, always refreshing rows already in the session.

    Raises:
        PersistenceError: If the store cannot be read
    """
    try:
        result = await db.execute(statement.execution_options(populate_existing=True))
        return list(result.scalars().all())
    except SQLAlchemyError as e:
        logger.exception(f"Failed to load {what}")
        raise PersistenceError(f"Could not load {what}", detail=str(e)) from e


# =============================================================================
# SERIALIZATION
# =============================================================================

def order_view(order: Order, restaurant: Optional[RestaurantSettings]) -> OrderView:
    """Render an order; items whose dish was deleted show as Unknown dish."""
    return OrderView(
        id=order.id,
        short_id=order.short_id,
        table_number=order.table_number,
        status=OrderStatus(order.status).value,
        status_label=status_label(order.status),
        total_price=order.total_price,
        display_total=price_view(order.total_price, restaurant),
        customer_message=order.customer_message,
        additional_message=order.additional_message,
        is_paid=bool(order.is_paid),
        is_archived=bool(order.is_archived),
        created_at=order.created_at,
        items=[
            OrderItemView(
                id=item.id,
                dish_id=item.dish_id,
                dish_name=item.dish.name if item.dish is not None else UNKNOWN_DISH,
                unit_price_eur=item.dish.price_eur if item.dish is not None else None,
                quantity=item.quantity,
                notes=item.notes,
            )
            for item in order.items
        ],
    )


# =============================================================================
# KITCHEN
# =============================================================================

async def kitchen_active(db: AsyncSession) -> list[Order]:
    """Unarchived pending/preparing/ready orders, oldest first."""
    return await load_orders(
        db,
        order_query()
        .where(Order.status.in_(ACTIVE_STATUSES), Order.is_archived.is_(False))
        .order_by(Order.created_at.asc()),
        "active orders",
    )


async def kitchen_history(db: AsyncSession, limit: Optional[int] = None) -> list[Order]:
    """The most recent unarchived completed orders, newest first."""
    if limit is None:
        limit = get_settings().kitchen_history_limit
    return await load_orders(
        db,
        order_query()
        .where(Order.status == OrderStatus.COMPLETED, Order.is_archived.is_(False))
        .order_by(Order.created_at.desc())
        .limit(limit),
        "kitchen history",
    )


async def kitchen_view(db: AsyncSession) -> KitchenView:
    restaurant = await get_restaurant_settings(db)
    active = await kitchen_active(db)
    history = await kitchen_history(db)
    return KitchenView(
        active=[order_view(o, restaurant) for o in active],
        history=[order_view(o, restaurant) for o in history],
        active_count=len(active),
        history_count=len(history),
    )


# =============================================================================
# CAISSE
# =============================================================================

def day_bounds(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> tuple[datetime, datetime]:
    """
    Local business day containing now, as a UTC [start, end) pair.

    Naive datetimes are taken as UTC.
    """
    tz = ZoneInfo(tz_name or get_settings().restaurant_timezone)
    now = now or utcnow()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    local_start = now.astimezone(tz).replace(hour=0, minute=0, second=0, microsecond=0)
    local_end = local_start + timedelta(days=1)
    return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)


async def caisse_orders(
    db: AsyncSession,
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> list[Order]:
    """Today's unarchived orders, newest first."""
    start, end = day_bounds(now, tz_name)
    return await load_orders(
        db,
        order_query()
        .where(
            Order.created_at >= start,
            Order.created_at < end,
            Order.is_archived.is_(False),
        )
        .order_by(Order.created_at.desc()),
        "today's orders",
    )


def split_caisse(orders: list[Order]) -> tuple[list[Order], list[Order], list[Order]]:
    """
    Partition today's orders into (to_pay, active, paid).

    to_pay: completed and unpaid; active: still in the kitchen and unpaid;
    paid: paid, whatever the status.
    """
    to_pay = [o for o in orders if o.status == OrderStatus.COMPLETED and not o.is_paid]
    active = [o for o in orders if o.status in ACTIVE_STATUSES and not o.is_paid]
    paid = [o for o in orders if o.is_paid]
    return to_pay, active, paid


def daily_revenue(paid: list[Order]) -> float:
    return sum(o.total_price for o in paid)


async def caisse_view(
    db: AsyncSession,
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> CaisseView:
    restaurant = await get_restaurant_settings(db)
    orders = await caisse_orders(db, now, tz_name)
    to_pay, active, paid = split_caisse(orders)
    revenue = daily_revenue(paid)

    start, _ = day_bounds(now, tz_name)
    business_day: date = start.astimezone(ZoneInfo(tz_name or get_settings().restaurant_timezone)).date()

    return CaisseView(
        day=business_day,
        to_pay=[order_view(o, restaurant) for o in to_pay],
        active=[order_view(o, restaurant) for o in active],
        paid=[order_view(o, restaurant) for o in paid],
        paid_count=len(paid),
        revenue_eur=revenue,
        revenue=price_view(revenue, restaurant),
    )


# =============================================================================
# GUEST
# =============================================================================

async def guest_order(db: AsyncSession, order_id: str) -> Order:
    """
    One order by id, archived or not.

    Raises:
        NotFoundError: If the id does not resolve
    """
    found = await load_orders(db, order_query().where(Order.id == order_id), "the order")
    if not found:
        raise NotFoundError(f"Order {order_id} not found")
    return found[0]


async def guest_view(db: AsyncSession, order_id: str) -> GuestOrderView:
    restaurant = await get_restaurant_settings(db)
    order = await guest_order(db, order_id)
    return GuestOrderView(
        order=order_view(order, restaurant),
        can_send_message=accepts_message(order),
    )
