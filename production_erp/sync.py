"""Ledger reconciliation for completed orders.

Completed orders must have one movement per consumed line plus one for the
output of their current completion cycle. :class:`MovementSyncJob` writes any
missing ones. It only appends ledger rows; pool quantities are left alone, and
since every row is keyed, running the job again changes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

from .domain import ItemType, MovementDirection, Order, OrderKind, OrderStatus
from .inventory import merge_requirements
from .ledger import ACTION_COMPLETE, OUTPUT_LINE, REASON_SYNC, MovementLedger, movement_key
from .store import InventoryStore

logger = logging.getLogger(__name__)

ExpectedMovement = Tuple[str, ItemType, str, MovementDirection, float]


@dataclass(slots=True)
class SyncReport:
    orders_checked: int = 0
    created: List[str] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)


def expected_movements(order: Order) -> Iterator[ExpectedMovement]:
    """Movements the current completion cycle of ``order`` should have written."""
    for index, line in enumerate(merge_requirements(order.requirements())):
        yield (
            movement_key(order.id, ACTION_COMPLETE, order.cycle, index),
            line.item_type,
            line.code,
            MovementDirection.OUT,
            line.required_quantity,
        )
    yield (
        movement_key(order.id, ACTION_COMPLETE, order.cycle, OUTPUT_LINE),
        order.kind.output_type,
        order.product_code,
        MovementDirection.IN,
        order.quantity,
    )


class MovementSyncJob:
    def __init__(self, store: InventoryStore, ledger: Optional[MovementLedger] = None) -> None:
        self.store = store
        self.ledger = ledger or MovementLedger(store)

    def run(self) -> SyncReport:
        report = SyncReport()
        for kind in OrderKind:
            for order in self.store.list_orders(kind):
                if order.status is not OrderStatus.COMPLETED or order.cycle < 1:
                    continue
                report.orders_checked += 1
                with self.store.transaction():
                    self._sync_order(order, report)
        if report.created:
            logger.warning(
                "Ledger sync re-created %d movement(s) across %d completed order(s)",
                report.created_count,
                report.orders_checked,
            )
        else:
            logger.info("Ledger sync found no gaps in %d completed order(s)", report.orders_checked)
        return report

    def _sync_order(self, order: Order, report: SyncReport) -> None:
        for key, item_type, code, direction, quantity in expected_movements(order):
            if quantity <= 0 or self.ledger.contains(key):
                continue
            item = self.store.find_item(item_type, code)
            self.ledger.record(
                item_type,
                code,
                direction,
                quantity,
                reason=REASON_SYNC,
                balance_after=item.quantity if item is not None else 0.0,
                idempotency_key=key,
                order_id=order.id,
            )
            report.created.append(key)


__all__ = ["MovementSyncJob", "SyncReport", "expected_movements"]
