import pytest

from production_erp.domain import OrderStatus
from production_erp.errors import InvalidTransitionError
from production_erp.lifecycle import (
    TransitionEffect,
    is_deletable,
    is_open,
    parse_status,
    plan_transition,
)

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "current, requested, effect",
    [
        (OrderStatus.PENDING, OrderStatus.IN_PROGRESS, TransitionEffect.NONE),
        (OrderStatus.IN_PROGRESS, OrderStatus.PENDING, TransitionEffect.NONE),
        (OrderStatus.PENDING, OrderStatus.CANCELLED, TransitionEffect.NONE),
        (OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED, TransitionEffect.NONE),
        (OrderStatus.PENDING, OrderStatus.COMPLETED, TransitionEffect.COMPLETE),
        (OrderStatus.IN_PROGRESS, OrderStatus.COMPLETED, TransitionEffect.COMPLETE),
        (OrderStatus.COMPLETED, OrderStatus.PENDING, TransitionEffect.REVERSE),
        (OrderStatus.COMPLETED, OrderStatus.IN_PROGRESS, TransitionEffect.REVERSE),
        (OrderStatus.COMPLETED, OrderStatus.CANCELLED, TransitionEffect.REVERSE),
        (OrderStatus.CANCELLED, OrderStatus.PENDING, TransitionEffect.NONE),
        (OrderStatus.CANCELLED, OrderStatus.IN_PROGRESS, TransitionEffect.NONE),
    ],
)
def test_transition_table(current, requested, effect):
    assert plan_transition("PRD-1", current, requested) is effect


@pytest.mark.parametrize("status", list(OrderStatus))
def test_same_status_is_a_no_op(status):
    assert plan_transition("PRD-1", status, status) is TransitionEffect.NONE


def test_cancelled_order_cannot_complete_directly():
    with pytest.raises(InvalidTransitionError) as excinfo:
        plan_transition("PRD-1", OrderStatus.CANCELLED, OrderStatus.COMPLETED)
    assert excinfo.value.current == "cancelled"
    assert excinfo.value.requested == "completed"
    assert excinfo.value.to_dict()["code"] == "INVALID_TRANSITION"


def test_parse_status_accepts_wire_values():
    assert parse_status("inProgress") is OrderStatus.IN_PROGRESS
    assert parse_status(OrderStatus.COMPLETED) is OrderStatus.COMPLETED
    with pytest.raises(ValueError):
        parse_status("done")


def test_only_pending_orders_are_deletable():
    assert is_deletable(OrderStatus.PENDING)
    assert not any(
        is_deletable(status) for status in OrderStatus if status is not OrderStatus.PENDING
    )


def test_open_statuses():
    assert is_open(OrderStatus.PENDING)
    assert is_open(OrderStatus.IN_PROGRESS)
    assert not is_open(OrderStatus.COMPLETED)
    assert not is_open(OrderStatus.CANCELLED)
