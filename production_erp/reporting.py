"""Read-only reports derived from the movement ledger, the pools and the orders."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from .domain import (
    InventoryItem,
    ItemType,
    MovementDirection,
    MovementRecord,
    OrderKind,
    OrderStatus,
    utcnow,
)
from .store import InventoryStore


@dataclass(slots=True)
class MovementTotals:
    count_in: int = 0
    count_out: int = 0
    quantity_in: float = 0.0
    quantity_out: float = 0.0

    def add(self, record: MovementRecord) -> None:
        if record.direction is MovementDirection.IN:
            self.count_in += 1
            self.quantity_in += record.quantity
        else:
            self.count_out += 1
            self.quantity_out += record.quantity

    @property
    def count(self) -> int:
        return self.count_in + self.count_out

    @property
    def net(self) -> float:
        return self.quantity_in - self.quantity_out


@dataclass(slots=True)
class MovementSummary:
    totals: MovementTotals = field(default_factory=MovementTotals)
    by_item_type: Dict[str, MovementTotals] = field(default_factory=dict)
    by_reason: Dict[str, int] = field(default_factory=dict)

    @property
    def total_movements(self) -> int:
        return self.totals.count


@dataclass(slots=True)
class MonthlyMovement:
    month: str
    totals: MovementTotals = field(default_factory=MovementTotals)


@dataclass(slots=True)
class ItemMovementReport:
    item_code: str
    item_type: Optional[ItemType]
    totals: MovementTotals = field(default_factory=MovementTotals)
    monthly: List[MonthlyMovement] = field(default_factory=list)
    movements: List[MovementRecord] = field(default_factory=list)


@dataclass(slots=True)
class ItemActivity:
    item_type: ItemType
    code: str
    name: str
    movement_count: int
    quantity_in: float
    quantity_out: float


@dataclass(slots=True)
class OrderStats:
    total: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    completed_cost: float = 0.0
    last_week: int = 0
    last_month: int = 0


@dataclass(slots=True)
class ProductionStats:
    production: OrderStats
    packaging: OrderStats


class InventoryReports:
    """Pure queries; nothing here writes to the store."""

    def __init__(self, store: InventoryStore) -> None:
        self.store = store

    def movements_summary(
        self, *, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> MovementSummary:
        summary = MovementSummary()
        for record in self.store.list_movements(start=start, end=end):
            summary.totals.add(record)
            summary.by_item_type.setdefault(record.item_type.value, MovementTotals()).add(record)
            summary.by_reason[record.reason] = summary.by_reason.get(record.reason, 0) + 1
        return summary

    def item_movement_report(
        self,
        item_code: str,
        *,
        item_type: Optional[ItemType] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> ItemMovementReport:
        report = ItemMovementReport(item_code=item_code, item_type=item_type)
        buckets: "OrderedDict[str, MonthlyMovement]" = OrderedDict()
        for record in self.store.list_movements(
            item_code=item_code, item_type=item_type, start=start, end=end
        ):
            report.movements.append(record)
            report.totals.add(record)
            month = record.created_at.strftime("%Y-%m")
            buckets.setdefault(month, MonthlyMovement(month)).totals.add(record)
        report.monthly = sorted(buckets.values(), key=lambda bucket: bucket.month)
        return report

    def most_active_items(
        self,
        limit: int = 10,
        *,
        item_type: Optional[ItemType] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[ItemActivity]:
        totals: Dict[Tuple[ItemType, str], MovementTotals] = {}
        for record in self.store.list_movements(item_type=item_type, start=start, end=end):
            totals.setdefault((record.item_type, record.item_code), MovementTotals()).add(record)
        ranked = sorted(
            totals.items(),
            key=lambda entry: (
                -entry[1].count,
                -(entry[1].quantity_in + entry[1].quantity_out),
                entry[0][1],
            ),
        )
        activities: List[ItemActivity] = []
        for (kind, code), item_totals in ranked[:limit]:
            item = self.store.find_item(kind, code)
            activities.append(
                ItemActivity(
                    item_type=kind,
                    code=code,
                    name=item.name if item is not None else "",
                    movement_count=item_totals.count,
                    quantity_in=item_totals.quantity_in,
                    quantity_out=item_totals.quantity_out,
                )
            )
        return activities

    def production_stats(self, *, today: Optional[date] = None) -> ProductionStats:
        today = today or utcnow().date()
        week_ago = today - timedelta(days=7)
        month_ago = today - timedelta(days=30)

        def collect(kind: OrderKind) -> OrderStats:
            stats = OrderStats(by_status={status.value: 0 for status in OrderStatus})
            for order in self.store.list_orders(kind):
                stats.total += 1
                stats.by_status[order.status.value] += 1
                if order.status is OrderStatus.COMPLETED:
                    stats.completed_cost += order.total_cost
                if order.date >= week_ago:
                    stats.last_week += 1
                if order.date >= month_ago:
                    stats.last_month += 1
            return stats

        return ProductionStats(
            production=collect(OrderKind.PRODUCTION),
            packaging=collect(OrderKind.PACKAGING),
        )

    def low_stock_items(self, item_type: Optional[ItemType] = None) -> List[InventoryItem]:
        return [item for item in self.store.list_items(item_type) if item.is_low_stock]


__all__ = [
    "InventoryReports",
    "ItemActivity",
    "ItemMovementReport",
    "MonthlyMovement",
    "MovementSummary",
    "MovementTotals",
    "OrderStats",
    "ProductionStats",
]
