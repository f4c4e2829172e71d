"""Availability and consumption protocol.

All quantity changes made by the engine go through :class:`StockProtocol`.
Multi-line debits are check-all-then-commit-all: the whole requirement set is
verified inside one store transaction before the first line is touched, and
each debit or credit appends exactly one movement record in that same
transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, NoReturn, Optional, Sequence, Tuple

from .domain import ItemType, MaterialRequirement, MovementDirection, MovementRecord
from .errors import (
    InsufficientStockError,
    PartialFailureError,
    ReversalFailedError,
    Shortage,
)
from .ledger import REASON_COMPENSATION, MovementLedger
from .store import QUANTITY_EPSILON, InventoryStore

logger = logging.getLogger(__name__)

QuantityChange = Tuple[ItemType, str, float]


def merge_requirements(requirements: Iterable[MaterialRequirement]) -> List[MaterialRequirement]:
    """Sum duplicate lines per item, keeping first-seen order and dropping empty lines."""

    merged: Dict[Tuple[ItemType, str], MaterialRequirement] = {}
    for line in requirements:
        if line.required_quantity < 0:
            raise ValueError(
                f"Requirement for {line.item_type.value}:{line.code} must not be negative"
            )
        key = (line.item_type, line.code)
        if key in merged:
            merged[key].required_quantity += line.required_quantity
        else:
            merged[key] = MaterialRequirement(
                line.item_type, line.code, line.required_quantity, line.name
            )
    return [line for line in merged.values() if line.required_quantity > QUANTITY_EPSILON]


@dataclass(slots=True)
class AvailabilityReport:
    """Outcome of an availability check. Truthy when every line is covered."""

    lines: List[MaterialRequirement] = field(default_factory=list)
    shortages: List[Shortage] = field(default_factory=list)

    def __bool__(self) -> bool:
        return not self.shortages

    @property
    def available(self) -> bool:
        return not self.shortages


class StockProtocol:
    """Checks, debits and credits inventory pools and writes the matching movements."""

    def __init__(self, store: InventoryStore, ledger: Optional[MovementLedger] = None) -> None:
        self.store = store
        self.ledger = ledger or MovementLedger(store)

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------
    def check_availability(
        self, requirements: Iterable[MaterialRequirement]
    ) -> AvailabilityReport:
        lines = merge_requirements(requirements)
        shortages: List[Shortage] = []
        for line in lines:
            item = self.store.find_item(line.item_type, line.code)
            on_hand = item.quantity if item is not None else 0.0
            if on_hand + QUANTITY_EPSILON < line.required_quantity:
                shortages.append(
                    Shortage(line.item_type.value, line.code, line.required_quantity, on_hand)
                )
        return AvailabilityReport(lines=lines, shortages=shortages)

    # ------------------------------------------------------------------
    # Debits and credits
    # ------------------------------------------------------------------
    def consume(
        self,
        requirements: Iterable[MaterialRequirement],
        *,
        reason: str,
        key_prefix: str,
        order_id: Optional[str] = None,
        document_ref: Optional[str] = None,
    ) -> List[MovementRecord]:
        """Debit every line or nothing.

        Raises ``InsufficientStockError`` without touching the store when any
        line is short.
        """
        with self.store.transaction():
            report = self.check_availability(requirements)
            if not report:
                logger.warning(
                    "Consumption for %s refused: %d line(s) short",
                    key_prefix,
                    len(report.shortages),
                )
                raise InsufficientStockError(report.shortages)
            return self._apply(
                report.lines,
                MovementDirection.OUT,
                reason=reason,
                key_prefix=key_prefix,
                order_id=order_id,
                document_ref=document_ref,
            )

    def release(
        self,
        requirements: Iterable[MaterialRequirement],
        *,
        reason: str,
        key_prefix: str,
        order_id: Optional[str] = None,
        document_ref: Optional[str] = None,
    ) -> List[MovementRecord]:
        """Credit each line back to its pool."""
        with self.store.transaction():
            return self._apply(
                merge_requirements(requirements),
                MovementDirection.IN,
                reason=reason,
                key_prefix=key_prefix,
                order_id=order_id,
                document_ref=document_ref,
            )

    def produce(
        self,
        item_type: ItemType,
        code: str,
        quantity: float,
        unit_cost: Optional[float] = None,
        *,
        reason: str,
        idempotency_key: str,
        order_id: Optional[str] = None,
        document_ref: Optional[str] = None,
    ) -> MovementRecord:
        """Credit ``quantity`` and, when given, overwrite the item's unit cost."""
        return self._single(
            item_type,
            code,
            quantity,
            MovementDirection.IN,
            unit_cost=unit_cost,
            reason=reason,
            idempotency_key=idempotency_key,
            order_id=order_id,
            document_ref=document_ref,
        )

    def remove(
        self,
        item_type: ItemType,
        code: str,
        quantity: float,
        *,
        reason: str,
        idempotency_key: str,
        order_id: Optional[str] = None,
        document_ref: Optional[str] = None,
    ) -> MovementRecord:
        """Debit an output item. Refuses to go below zero."""
        return self._single(
            item_type,
            code,
            quantity,
            MovementDirection.OUT,
            reason=reason,
            idempotency_key=idempotency_key,
            order_id=order_id,
            document_ref=document_ref,
        )

    def _single(
        self,
        item_type: ItemType,
        code: str,
        quantity: float,
        direction: MovementDirection,
        *,
        reason: str,
        idempotency_key: str,
        unit_cost: Optional[float] = None,
        order_id: Optional[str] = None,
        document_ref: Optional[str] = None,
    ) -> MovementRecord:
        if quantity <= 0:
            raise ValueError("Quantity must be positive")
        delta = quantity if direction is MovementDirection.IN else -quantity
        with self.store.transaction():
            balance = self.store.update_quantity(item_type, code, delta)
            try:
                record = self.ledger.record(
                    item_type,
                    code,
                    direction,
                    quantity,
                    reason=reason,
                    balance_after=balance,
                    idempotency_key=idempotency_key,
                    order_id=order_id,
                    document_ref=document_ref,
                )
            except Exception as exc:
                self.abort(reason, [], exc, unrecorded=[(item_type, code, delta)])
            if unit_cost is not None:
                self.store.set_unit_cost(item_type, code, unit_cost)
            return record

    def _apply(
        self,
        lines: Sequence[MaterialRequirement],
        direction: MovementDirection,
        *,
        reason: str,
        key_prefix: str,
        order_id: Optional[str],
        document_ref: Optional[str],
    ) -> List[MovementRecord]:
        sign = 1.0 if direction is MovementDirection.IN else -1.0
        applied: List[MovementRecord] = []
        for index, line in enumerate(lines):
            delta = sign * line.required_quantity
            changed = False
            try:
                balance = self.store.update_quantity(line.item_type, line.code, delta)
                changed = True
                applied.append(
                    self.ledger.record(
                        line.item_type,
                        line.code,
                        direction,
                        line.required_quantity,
                        reason=reason,
                        balance_after=balance,
                        idempotency_key=f"{key_prefix}:{index}",
                        order_id=order_id,
                        document_ref=document_ref,
                    )
                )
            except Exception as exc:
                unrecorded = [(line.item_type, line.code, delta)] if changed else []
                if not applied and not unrecorded:
                    raise
                self.abort(reason, applied, exc, unrecorded=unrecorded)
        return applied

    # ------------------------------------------------------------------
    # Compensation
    # ------------------------------------------------------------------
    def abort(
        self,
        operation: str,
        applied: Sequence[MovementRecord],
        cause: BaseException,
        *,
        unrecorded: Sequence[QuantityChange] = (),
    ) -> NoReturn:
        """Undo ``applied`` work and raise ``PartialFailureError``.

        Transactional stores discard the work when the error leaves the
        enclosing transaction; otherwise every applied movement is mirrored
        here. ``unrecorded`` lists quantity changes that have no movement yet.
        """
        count = len(applied) + len(unrecorded)
        if self.store.supports_transactions:
            logger.error("%s failed after %d line(s); rolling back: %s", operation, count, cause)
            raise PartialFailureError(operation, count, cause) from cause

        logger.error("%s failed after %d line(s); compensating: %s", operation, count, cause)
        try:
            self.compensate(applied, unrecorded=unrecorded)
        except Exception as reversal_error:
            logger.critical(
                "Compensation of %s failed; inventory may be inconsistent",
                operation,
                exc_info=True,
                extra={"applied": count},
            )
            raise ReversalFailedError(operation, count, cause, reversal_error) from reversal_error
        raise PartialFailureError(operation, count, cause) from cause

    def compensate(
        self,
        applied: Sequence[MovementRecord],
        *,
        unrecorded: Sequence[QuantityChange] = (),
    ) -> List[MovementRecord]:
        """Mirror applied movements, newest first, and return the new records."""
        for item_type, code, delta in unrecorded:
            self.store.update_quantity(item_type, code, -delta)
        mirrored: List[MovementRecord] = []
        for record in reversed(applied):
            balance = self.store.update_quantity(
                record.item_type, record.item_code, -record.signed_quantity
            )
            mirrored.append(
                self.ledger.record(
                    record.item_type,
                    record.item_code,
                    record.direction.opposite,
                    record.quantity,
                    reason=REASON_COMPENSATION,
                    balance_after=balance,
                    idempotency_key=f"{record.idempotency_key}:undo",
                    order_id=record.order_id,
                    document_ref=record.document_ref,
                )
            )
        return mirrored


__all__ = [
    "AvailabilityReport",
    "StockProtocol",
    "merge_requirements",
]
