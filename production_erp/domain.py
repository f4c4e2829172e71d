"""Core data structures for the production and packaging ERP."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import ClassVar, List, Optional, Tuple, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` in UTC; naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ItemType(str, Enum):
    """The four independently keyed inventory pools."""

    RAW = "raw"
    SEMI_FINISHED = "semi_finished"
    PACKAGING = "packaging"
    FINISHED = "finished"

    @property
    def label(self) -> str:
        return {
            ItemType.RAW: "Raw material",
            ItemType.SEMI_FINISHED: "Semi-finished product",
            ItemType.PACKAGING: "Packaging material",
            ItemType.FINISHED: "Finished product",
        }[self]


class OrderStatus(str, Enum):
    """Lifecycle stages shared by production and packaging orders."""

    PENDING = "pending"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderKind(str, Enum):
    PRODUCTION = "production"
    PACKAGING = "packaging"

    @property
    def output_type(self) -> ItemType:
        if self is OrderKind.PRODUCTION:
            return ItemType.SEMI_FINISHED
        return ItemType.FINISHED


class MovementDirection(str, Enum):
    IN = "in"
    OUT = "out"

    @property
    def opposite(self) -> "MovementDirection":
        return MovementDirection.OUT if self is MovementDirection.IN else MovementDirection.IN


@dataclass(slots=True)
class RecipeIngredient:
    """A raw material share of a semi-finished batch, in percent."""

    code: str
    percentage: float
    name: str = ""


@dataclass(slots=True)
class BomComponent:
    """A per-unit component of a finished product."""

    code: str
    quantity: float
    name: str = ""


@dataclass(slots=True)
class InventoryItem:
    """An item in one of the four inventory pools.

    Semi-finished items carry ``ingredients`` (raw materials by percentage);
    finished items carry ``semi_finished`` and ``packaging`` per-unit
    components. Raw and packaging items accumulate ``importance`` as they are
    consumed by completed orders.
    """

    code: str
    name: str
    item_type: ItemType
    unit: str
    quantity: float = 0.0
    unit_cost: float = 0.0
    min_stock: float = 0.0
    importance: int = 0
    ingredients: List[RecipeIngredient] = field(default_factory=list)
    semi_finished: Optional[BomComponent] = None
    packaging: List[BomComponent] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> Tuple[ItemType, str]:
        return (self.item_type, self.code)

    @property
    def is_low_stock(self) -> bool:
        return self.quantity < self.min_stock

    @property
    def stock_value(self) -> float:
        return self.quantity * self.unit_cost


@dataclass(slots=True)
class MaterialRequirement:
    """One line of a consumption request: take ``required_quantity`` of an item."""

    item_type: ItemType
    code: str
    required_quantity: float
    name: str = ""


@dataclass(slots=True)
class MovementRecord:
    """Append-only ledger entry for a single quantity change.

    ``balance_after`` is an audit snapshot only; the pool quantity is the
    source of truth for current stock.
    """

    id: str
    item_code: str
    item_type: ItemType
    direction: MovementDirection
    quantity: float
    reason: str
    balance_after: float
    idempotency_key: str
    order_id: Optional[str] = None
    document_ref: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def signed_quantity(self) -> float:
        return self.quantity if self.direction is MovementDirection.IN else -self.quantity


@dataclass(slots=True)
class OrderLine:
    """Frozen requirement captured on an order when it is created."""

    code: str
    required_quantity: float
    name: str = ""


@dataclass(slots=True)
class ProductionOrder:
    """Turns raw materials into a semi-finished product."""

    kind: ClassVar[OrderKind] = OrderKind.PRODUCTION

    id: str
    code: str
    product_code: str
    product_name: str
    quantity: float
    unit: str
    date: date
    status: OrderStatus = OrderStatus.PENDING
    ingredients: List[OrderLine] = field(default_factory=list)
    total_cost: float = 0.0
    cycle: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def requirements(self) -> List[MaterialRequirement]:
        return [
            MaterialRequirement(ItemType.RAW, line.code, line.required_quantity, line.name)
            for line in self.ingredients
        ]


@dataclass(slots=True)
class PackagingOrder:
    """Packs a semi-finished product into a finished product."""

    kind: ClassVar[OrderKind] = OrderKind.PACKAGING

    id: str
    code: str
    product_code: str
    product_name: str
    quantity: float
    unit: str
    date: date
    semi_finished: OrderLine
    status: OrderStatus = OrderStatus.PENDING
    packaging_materials: List[OrderLine] = field(default_factory=list)
    total_cost: float = 0.0
    cycle: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def requirements(self) -> List[MaterialRequirement]:
        lines = [
            MaterialRequirement(
                ItemType.SEMI_FINISHED,
                self.semi_finished.code,
                self.semi_finished.required_quantity,
                self.semi_finished.name,
            )
        ]
        lines.extend(
            MaterialRequirement(ItemType.PACKAGING, line.code, line.required_quantity, line.name)
            for line in self.packaging_materials
        )
        return lines


Order = Union[ProductionOrder, PackagingOrder]


__all__ = [
    "as_utc",
    "utcnow",
    "ItemType",
    "OrderStatus",
    "OrderKind",
    "MovementDirection",
    "RecipeIngredient",
    "BomComponent",
    "InventoryItem",
    "MaterialRequirement",
    "MovementRecord",
    "OrderLine",
    "ProductionOrder",
    "PackagingOrder",
    "Order",
]
