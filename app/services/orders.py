"""
Order Service

Every write to the orders table goes through here:

    create_order            cart -> order + items, one transaction
    update_status           one step forward in the status machine
    mark_paid               completed -> paid flag
    set_additional_message  guest note to the kitchen, before ready
    archive_completed       kitchen "clear history"
    archive_paid            caisse "clear paid orders"

Each successful write publishes a change event after commit. Publishing is
best effort: the write is already durable and the views also poll.
"""

import logging
from typing import Iterable, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.errors import InvalidTransitionError, NotFoundError, PersistenceError, ValidationError
from app.models import Dish, Order, OrderItem, OrderStatus, utcnow
from app.schemas import OrderItemCreate
from app.services.changefeed import BaseChangeFeed, ChangeEvent, ChangeType
from app.services.lifecycle import accepts_message, ensure_payable, ensure_transition

logger = logging.getLogger(__name__)

ORDERS_TABLE = Order.__tablename__


def order_query():
    """Orders with their items and each item's dish, loaded eagerly."""
    return select(Order).options(
        selectinload(Order.items).selectinload(OrderItem.dish)
    )


class OrderService:
    """
    Order lifecycle operations bound to one DB session.

    Attributes:
        db: Request-scoped session
        feed: Change feed notified after each commit
    """

    def __init__(self, db: AsyncSession, feed: Optional[BaseChangeFeed] = None):
        self.db = db
        self.feed = feed

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _commit(self, action: str) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Failed to {action}")
            raise PersistenceError(f"Could not {action}", detail=str(e)) from e

    async def _notify(self, change_type: ChangeType, order_ids: Iterable[str]) -> None:
        if self.feed is None:
            return
        for order_id in order_ids:
            try:
                await self.feed.publish(ChangeEvent(ORDERS_TABLE, change_type, order_id))
            except Exception as e:
                logger.warning(f"Change notification for order {order_id} not sent: {e}")

    async def get_order(self, order_id: str) -> Order:
        """
        Fetch one order with its items.

        Raises:
            NotFoundError: If the id does not resolve
        """
        try:
            result = await self.db.execute(
                order_query()
                .where(Order.id == order_id)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            logger.exception(f"Failed to load order {order_id}")
            raise PersistenceError("Could not load the order", detail=str(e)) from e

        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    # =========================================================================
    # CREATION
    # =========================================================================

    async def create_order(
        self,
        table_number: str,
        items: Sequence[OrderItemCreate],
        customer_message: Optional[str] = None,
    ) -> Order:
        """
        Submit a cart as a new pending order.

        The total is computed from the dishes' current EUR prices, read in
        the same transaction as the inserts; prices shown to the guest are
        never trusted. Order and items are committed together or not at all.

        Raises:
            ValidationError: Empty table/cart, bad quantity, unknown or
                unavailable dish
            PersistenceError: If the store fails (nothing is left behind)
        """
        table = (table_number or "").strip()
        if not table:
            raise ValidationError("Table number is required")
        if not items:
            raise ValidationError("Cannot submit an empty order")
        for line in items:
            if line.quantity is None or line.quantity <= 0:
                raise ValidationError(f"Quantity must be positive (dish {line.dish_id})")

        try:
            dish_ids = {line.dish_id for line in items}
            result = await self.db.execute(select(Dish).where(Dish.id.in_(dish_ids)))
            dishes = {dish.id: dish for dish in result.scalars().all()}

            missing = sorted(dish_ids - dishes.keys())
            if missing:
                raise ValidationError("Unknown dish", detail=", ".join(missing))
            unavailable = sorted(d.name for d in dishes.values() if not d.is_available)
            if unavailable:
                raise ValidationError("Dish no longer available", detail=", ".join(unavailable))

            total = sum(dishes[line.dish_id].price_eur * line.quantity for line in items)

            order = Order(
                table_number=table,
                status=OrderStatus.PENDING,
                total_price=total,
                customer_message=(customer_message or "").strip() or None,
                is_paid=False,
                is_archived=False,
                created_at=utcnow(),
            )
            order.items = [
                OrderItem(
                    dish_id=line.dish_id,
                    quantity=line.quantity,
                    notes=(line.notes or "").strip() or None,
                    position=position,
                )
                for position, line in enumerate(items)
            ]
            self.db.add(order)
            await self.db.commit()

        except ValidationError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Failed to create order for table {table}")
            raise PersistenceError("Could not save the order", detail=str(e)) from e

        logger.info(
            f"Order #{order.short_id} created for table {table}: "
            f"{len(items)} line(s), {total:.2f} EUR"
        )
        await self._notify(ChangeType.INSERT, [order.id])
        return await self.get_order(order.id)

    # =========================================================================
    # STATUS & FLAGS
    # =========================================================================

    async def update_status(self, order_id: str, new_status: OrderStatus) -> Order:
        """
        Move an order one step along pending -> preparing -> ready -> completed.

        Raises:
            NotFoundError: Unknown order
            InvalidTransitionError: Anything but the immediate successor
        """
        new_status = OrderStatus(new_status)
        order = await self.get_order(order_id)
        previous = order.status
        ensure_transition(order, new_status)

        order.status = new_status
        await self._commit("update order status")

        logger.info(f"Order #{order.short_id}: {previous.value} -> {new_status.value}")
        await self._notify(ChangeType.UPDATE, [order.id])
        return order

    async def mark_paid(self, order_id: str) -> tuple[Order, bool]:
        """
        Flag a completed order as paid. Status is left untouched.

        Returns:
            (order, newly_paid) where newly_paid is False when the order
            was already paid (no-op)

        Raises:
            InvalidTransitionError: If the order is not completed yet
        """
        order = await self.get_order(order_id)
        if order.is_paid:
            return order, False
        ensure_payable(order)

        order.is_paid = True
        order.paid_at = utcnow()
        await self._commit("mark order as paid")

        logger.info(f"Order #{order.short_id} paid ({order.total_price:.2f} EUR)")
        await self._notify(ChangeType.UPDATE, [order.id])
        return order, True

    async def set_additional_message(self, order_id: str, text: str) -> Order:
        """
        Replace the guest's follow-up message to the kitchen.

        Raises:
            ValidationError: Blank message
            InvalidTransitionError: Once the order is ready (or archived)
        """
        message = (text or "").strip()
        if not message:
            raise ValidationError("Message cannot be empty")

        order = await self.get_order(order_id)
        if not accepts_message(order):
            raise InvalidTransitionError(
                f"Order #{order.short_id} no longer accepts messages",
                detail=f"status is {order.status.value}",
            )

        order.additional_message = message
        await self._commit("save the message")

        logger.info(f"Order #{order.short_id}: additional message updated")
        await self._notify(ChangeType.UPDATE, [order.id])
        return order

    # =========================================================================
    # ARCHIVAL
    # =========================================================================

    async def _archive_where(self, *criteria, action: str) -> int:
        try:
            result = await self.db.execute(
                update(Order)
                .where(Order.is_archived.is_(False), *criteria)
                .values(is_archived=True, updated_at=utcnow())
                .returning(Order.id)
            )
            archived_ids = list(result.scalars().all())
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Failed to {action}")
            raise PersistenceError(f"Could not {action}", detail=str(e)) from e

        logger.info(f"{action}: {len(archived_ids)} order(s) archived")
        await self._notify(ChangeType.UPDATE, archived_ids)
        return len(archived_ids)

    async def archive_completed(self) -> int:
        """Archive every completed order. Returns the number newly archived."""
        return await self._archive_where(
            Order.status == OrderStatus.COMPLETED,
            action="clear kitchen history",
        )

    async def archive_paid(self) -> int:
        """Archive every paid order. Returns the number newly archived."""
        return await self._archive_where(
            Order.is_paid.is_(True),
            action="clear paid orders",
        )
