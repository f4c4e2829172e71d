"""Append-only movement ledger on top of an inventory store."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Union
from uuid import uuid4

from .domain import ItemType, MovementDirection, MovementRecord
from .repository import PagedQuery
from .store import InventoryStore

logger = logging.getLogger(__name__)

# Reason tags written on movement records.
REASON_PRODUCTION_CONSUMPTION = "production_consumption"
REASON_PRODUCTION_OUTPUT = "production_output"
REASON_PACKAGING_CONSUMPTION = "packaging_consumption"
REASON_PACKAGING_OUTPUT = "packaging_output"
REASON_REVERSAL = "order_reversal"
REASON_COMPENSATION = "compensation"
REASON_OPENING_BALANCE = "opening_balance"
REASON_RECEIPT = "stock_receipt"
REASON_ISSUE = "stock_issue"
REASON_SYNC = "ledger_sync"

ACTION_COMPLETE = "complete"
ACTION_REVERSE = "reverse"
OUTPUT_LINE = "output"


def movement_key(order_id: str, action: str, cycle: int, line: Union[int, str]) -> str:
    """Idempotency key of an order movement: ``<order_id>:<action>:<cycle>:<line>``."""
    return f"{order_id}:{action}:{cycle}:{line}"


def document_key(document_ref: str, direction: MovementDirection, item_type: ItemType, code: str) -> str:
    return f"doc:{document_ref}:{direction.value}:{item_type.value}:{code}"


class MovementLedger:
    """Writes and queries :class:`MovementRecord` rows.

    Records are never updated or deleted; a correction is a new record in the
    opposite direction.
    """

    def __init__(self, store: InventoryStore) -> None:
        self.store = store

    def record(
        self,
        item_type: ItemType,
        code: str,
        direction: MovementDirection,
        quantity: float,
        *,
        reason: str,
        balance_after: float,
        idempotency_key: str,
        order_id: Optional[str] = None,
        document_ref: Optional[str] = None,
    ) -> MovementRecord:
        if quantity <= 0:
            raise ValueError("Movement quantity must be positive")
        record = MovementRecord(
            id=str(uuid4()),
            item_code=code,
            item_type=item_type,
            direction=direction,
            quantity=quantity,
            reason=reason,
            balance_after=balance_after,
            idempotency_key=idempotency_key,
            order_id=order_id,
            document_ref=document_ref,
        )
        self.store.insert_movement(record)
        logger.debug(
            "Recorded %s %s of %s:%s (%s)",
            direction.value,
            quantity,
            item_type.value,
            code,
            idempotency_key,
        )
        return record

    def contains(self, idempotency_key: str) -> bool:
        return self.store.has_movement(idempotency_key)

    def movements(
        self,
        *,
        item_code: Optional[str] = None,
        item_type: Optional[ItemType] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> PagedQuery[MovementRecord]:
        return self.store.list_movements(
            item_code=item_code, item_type=item_type, start=start, end=end
        )

    def movements_for_order(self, order_id: str) -> PagedQuery[MovementRecord]:
        return self.store.list_movements(order_id=order_id)

    def net_quantity(self, item_type: ItemType, code: str) -> float:
        """Sum of signed movement quantities for one item."""
        return sum(
            record.signed_quantity
            for record in self.store.list_movements(item_code=code, item_type=item_type)
        )


__all__ = [
    "ACTION_COMPLETE",
    "ACTION_REVERSE",
    "OUTPUT_LINE",
    "MovementLedger",
    "document_key",
    "movement_key",
]
