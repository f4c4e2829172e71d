"""Status transition rules shared by production and packaging orders."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple, Union

from .domain import OrderStatus
from .errors import InvalidTransitionError


class TransitionEffect(str, Enum):
    """Inventory side effect of a status change."""

    NONE = "none"
    COMPLETE = "complete"
    REVERSE = "reverse"


_OPEN = (OrderStatus.PENDING, OrderStatus.IN_PROGRESS)

TRANSITIONS: Dict[Tuple[OrderStatus, OrderStatus], TransitionEffect] = {
    (OrderStatus.PENDING, OrderStatus.IN_PROGRESS): TransitionEffect.NONE,
    (OrderStatus.IN_PROGRESS, OrderStatus.PENDING): TransitionEffect.NONE,
    (OrderStatus.PENDING, OrderStatus.CANCELLED): TransitionEffect.NONE,
    (OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED): TransitionEffect.NONE,
    (OrderStatus.PENDING, OrderStatus.COMPLETED): TransitionEffect.COMPLETE,
    (OrderStatus.IN_PROGRESS, OrderStatus.COMPLETED): TransitionEffect.COMPLETE,
    (OrderStatus.COMPLETED, OrderStatus.PENDING): TransitionEffect.REVERSE,
    (OrderStatus.COMPLETED, OrderStatus.IN_PROGRESS): TransitionEffect.REVERSE,
    (OrderStatus.COMPLETED, OrderStatus.CANCELLED): TransitionEffect.REVERSE,
    (OrderStatus.CANCELLED, OrderStatus.PENDING): TransitionEffect.NONE,
    (OrderStatus.CANCELLED, OrderStatus.IN_PROGRESS): TransitionEffect.NONE,
}


def parse_status(value: Union[str, OrderStatus]) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValueError(f"Unknown order status {value!r}") from None


def plan_transition(
    order_code: str, current: OrderStatus, requested: OrderStatus
) -> TransitionEffect:
    """Return the effect of moving from ``current`` to ``requested``.

    Re-requesting the current status is a no-op. A cancelled order has to be
    reopened before it can be completed.
    """
    if current is requested:
        return TransitionEffect.NONE
    try:
        return TRANSITIONS[(current, requested)]
    except KeyError:
        raise InvalidTransitionError(order_code, current.value, requested.value) from None


def is_open(status: OrderStatus) -> bool:
    return status in _OPEN


def is_deletable(status: OrderStatus) -> bool:
    return status is OrderStatus.PENDING


__all__ = [
    "TRANSITIONS",
    "TransitionEffect",
    "is_deletable",
    "is_open",
    "parse_status",
    "plan_transition",
]
