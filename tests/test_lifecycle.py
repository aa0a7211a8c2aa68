import pytest

from app.core.errors import InvalidTransitionError
from app.models import Order, OrderStatus
from app.services.lifecycle import (
    accepts_message,
    can_transition,
    ensure_payable,
    ensure_transition,
    next_status,
    status_label,
)

PENDING, PREPARING, READY, COMPLETED = (
    OrderStatus.PENDING,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.COMPLETED,
)


def make_order(status: OrderStatus, archived: bool = False) -> Order:
    return Order(
        id="0a1b2c3d-0000-0000-0000-000000000000",
        table_number="4",
        status=status,
        total_price=10.0,
        is_paid=False,
        is_archived=archived,
    )


@pytest.mark.parametrize("current,target", [
    (PENDING, PREPARING),
    (PREPARING, READY),
    (READY, COMPLETED),
])
def test_forward_step_is_allowed(current, target):
    assert can_transition(current, target)
    ensure_transition(make_order(current), target)


@pytest.mark.parametrize("current,target", [
    (PENDING, READY),
    (PENDING, COMPLETED),
    (PREPARING, COMPLETED),
    (PREPARING, PENDING),
    (READY, PREPARING),
    (COMPLETED, PENDING),
    (COMPLETED, READY),
    (PENDING, PENDING),
    (COMPLETED, COMPLETED),
])
def test_skips_backward_and_same_state_are_rejected(current, target):
    assert not can_transition(current, target)
    with pytest.raises(InvalidTransitionError):
        ensure_transition(make_order(current), target)


def test_completed_is_terminal():
    assert next_status(COMPLETED) is None
    with pytest.raises(InvalidTransitionError) as exc:
        ensure_transition(make_order(COMPLETED), PENDING)
    assert "final" in exc.value.detail


def test_archived_order_cannot_move():
    with pytest.raises(InvalidTransitionError):
        ensure_transition(make_order(PENDING, archived=True), PREPARING)


@pytest.mark.parametrize("status", [PENDING, PREPARING, READY])
def test_payment_needs_completed(status):
    with pytest.raises(InvalidTransitionError):
        ensure_payable(make_order(status))


def test_completed_order_is_payable():
    ensure_payable(make_order(COMPLETED))


def test_message_window_closes_at_ready():
    assert accepts_message(make_order(PENDING))
    assert accepts_message(make_order(PREPARING))
    assert not accepts_message(make_order(READY))
    assert not accepts_message(make_order(COMPLETED))
    assert not accepts_message(make_order(PENDING, archived=True))


def test_status_labels():
    assert status_label(PENDING) == "En attente"
    assert status_label("completed") == "Servie"
