"""Typed exception hierarchy for the order lifecycle engine.

Every error carries a class-level ``code`` (machine readable, API safe) and
stores its context as attributes so callers never parse messages::

    ProductionERPError
    +-- NotFoundError                 NOT_FOUND
    +-- InvalidTransitionError        INVALID_TRANSITION
    +-- InsufficientStockError        INSUFFICIENT_STOCK
    +-- InsufficientSpecError         INSUFFICIENT_SPEC
    +-- NotDeletableError             NOT_DELETABLE
    +-- OrderLockedError              ORDER_LOCKED
    +-- DuplicateItemError            DUPLICATE_ITEM
    +-- DuplicateMovementError        DUPLICATE_MOVEMENT
    +-- PersistenceError              PERSISTENCE_FAILURE
    +-- PartialFailureError           PARTIAL_FAILURE
        +-- ReversalFailedError       REVERSAL_FAILED

``InsufficientStockError`` and ``InvalidTransitionError`` are expected,
user-facing outcomes. ``PartialFailureError`` is only raised after the
debited lines were compensated; ``ReversalFailedError`` means compensation
itself failed and stock may be inconsistent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .repository import DuplicateRecordError, RecordNotFoundError


class ProductionERPError(Exception):
    """Base class for all engine errors."""

    code: str = "PRODUCTION_ERP_ERROR"

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "detail": str(self)}


class NotFoundError(ProductionERPError, RecordNotFoundError):
    """An order or inventory item does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity: str, key: str):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key!r} not found")

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "entity": self.entity, "key": self.key}


class InvalidTransitionError(ProductionERPError):
    code: str = "INVALID_TRANSITION"

    def __init__(self, order_code: str, current: str, requested: str):
        self.order_code = order_code
        self.current = current
        self.requested = requested
        super().__init__(
            f"Order {order_code} cannot move from {current!r} to {requested!r}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "order_code": self.order_code,
            "current": self.current,
            "requested": self.requested,
        }


@dataclass(frozen=True)
class Shortage:
    """A requirement line that cannot be covered by the current stock."""

    item_type: str
    code: str
    required: float
    on_hand: float

    @property
    def missing(self) -> float:
        return self.required - self.on_hand

    def as_dict(self) -> Dict[str, Any]:
        return {
            "item_type": self.item_type,
            "code": self.code,
            "required": self.required,
            "on_hand": self.on_hand,
            "missing": self.missing,
        }


class InsufficientStockError(ProductionERPError):
    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, shortages: Sequence[Shortage]):
        self.shortages: List[Shortage] = list(shortages)
        details = ", ".join(
            f"{s.item_type}:{s.code} needs {s.required:g}, has {s.on_hand:g} "
            f"(missing {s.missing:g})"
            for s in self.shortages
        )
        super().__init__(f"Insufficient stock: {details}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "shortages": [shortage.as_dict() for shortage in self.shortages],
        }


class InsufficientSpecError(ProductionERPError):
    """The product definition cannot be turned into an order."""

    code: str = "INSUFFICIENT_SPEC"

    def __init__(self, product_code: str, reason: str):
        self.product_code = product_code
        self.reason = reason
        super().__init__(f"Cannot build an order for {product_code!r}: {reason}")


class NotDeletableError(ProductionERPError):
    code: str = "NOT_DELETABLE"

    def __init__(self, entity: str, key: str, reason: str):
        self.entity = entity
        self.key = key
        self.reason = reason
        super().__init__(f"{entity} {key!r} cannot be deleted: {reason}")


class OrderLockedError(ProductionERPError):
    """A completed order's snapshot can no longer be edited."""

    code: str = "ORDER_LOCKED"

    def __init__(self, order_code: str, status: str):
        self.order_code = order_code
        self.status = status
        super().__init__(f"Order {order_code} is {status} and cannot be edited")

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "order_code": self.order_code, "status": self.status}


class DuplicateItemError(ProductionERPError, DuplicateRecordError):
    code: str = "DUPLICATE_ITEM"

    def __init__(self, entity: str, key: str):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key!r} already exists")

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "entity": self.entity, "key": self.key}


class DuplicateMovementError(ProductionERPError, DuplicateRecordError):
    """A movement with the same idempotency key was already recorded."""

    code: str = "DUPLICATE_MOVEMENT"

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"Movement {idempotency_key!r} already recorded")


class PersistenceError(ProductionERPError):
    """The underlying store failed; the operation was aborted."""

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        message = f"Store failure during {operation}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class PartialFailureError(ProductionERPError):
    """A multi-line operation failed midway and the applied lines were undone."""

    code: str = "PARTIAL_FAILURE"

    def __init__(self, operation: str, applied: int, cause: BaseException):
        self.operation = operation
        self.applied = applied
        self.cause = cause
        super().__init__(
            f"{operation} failed after {applied} line(s); applied lines were reversed: {cause}"
        )


class ReversalFailedError(PartialFailureError):
    """Compensation of a partial failure failed; inventory needs attention."""

    code: str = "REVERSAL_FAILED"

    def __init__(
        self,
        operation: str,
        applied: int,
        cause: BaseException,
        reversal_error: BaseException,
    ):
        self.reversal_error = reversal_error
        ProductionERPError.__init__(
            self,
            f"{operation} failed after {applied} line(s) and the reversal also failed "
            f"({reversal_error}); inventory may be inconsistent: {cause}",
        )
        self.operation = operation
        self.applied = applied
        self.cause = cause


__all__ = [
    "ProductionERPError",
    "NotFoundError",
    "InvalidTransitionError",
    "Shortage",
    "InsufficientStockError",
    "InsufficientSpecError",
    "NotDeletableError",
    "OrderLockedError",
    "DuplicateItemError",
    "DuplicateMovementError",
    "PersistenceError",
    "PartialFailureError",
    "ReversalFailedError",
]
