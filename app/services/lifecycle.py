"""
Order Status State Machine

    pending -> preparing -> ready -> completed

Only the immediate successor is a legal target. There are no backward
edges and no cancellation; completed is terminal. Payment and archival are
flags on top of the status, not states of this machine.
"""

from typing import Optional

from app.core.errors import InvalidTransitionError
from app.models import Order, OrderStatus

NEXT_STATUS: dict[OrderStatus, Optional[OrderStatus]] = {
    OrderStatus.PENDING: OrderStatus.PREPARING,
    OrderStatus.PREPARING: OrderStatus.READY,
    OrderStatus.READY: OrderStatus.COMPLETED,
    OrderStatus.COMPLETED: None,
}

ACTIVE_STATUSES = (OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY)

# Statuses in which the guest may still leave a message for the kitchen
MESSAGE_OPEN_STATUSES = (OrderStatus.PENDING, OrderStatus.PREPARING)

STATUS_LABELS = {
    OrderStatus.PENDING: "En attente",
    OrderStatus.PREPARING: "En préparation",
    OrderStatus.READY: "Prête",
    OrderStatus.COMPLETED: "Servie",
}


def next_status(current: OrderStatus) -> Optional[OrderStatus]:
    return NEXT_STATUS[OrderStatus(current)]


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """True only when target is the immediate successor of current."""
    successor = next_status(current)
    return successor is not None and successor == OrderStatus(target)


def ensure_transition(order: Order, target: OrderStatus) -> None:
    """
    Check that order may move to target.

    Raises:
        InvalidTransitionError: On archived orders, skips, backward or
            same-state moves, and any move out of completed
    """
    if order.is_archived:
        raise InvalidTransitionError(f"Order #{order.short_id} is archived")

    current = OrderStatus(order.status)
    if not can_transition(current, target):
        expected = next_status(current)
        raise InvalidTransitionError(
            f"Cannot move order #{order.short_id} from {current.value} to {OrderStatus(target).value}",
            detail=(
                f"next allowed status is {expected.value}"
                if expected else f"{current.value} is final"
            ),
        )


def ensure_payable(order: Order) -> None:
    """Payment is only taken once the order has been served."""
    if order.is_archived:
        raise InvalidTransitionError(f"Order #{order.short_id} is archived")
    if OrderStatus(order.status) != OrderStatus.COMPLETED:
        raise InvalidTransitionError(
            f"Order #{order.short_id} cannot be paid before it is completed",
            detail=f"current status is {OrderStatus(order.status).value}",
        )


def accepts_message(order: Order) -> bool:
    return not order.is_archived and OrderStatus(order.status) in MESSAGE_OPEN_STATUSES


def status_label(status: OrderStatus) -> str:
    return STATUS_LABELS.get(OrderStatus(status), str(status))
