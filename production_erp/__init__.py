"""Production ERP for a process manufacturer.

This package tracks raw materials, semi-finished products, packaging materials
and finished products through production and packaging orders. Completing an
order consumes its inputs, produces its output at the rolled-up unit cost and
writes an append-only movement ledger; reopening a completed order reverses
all of that exactly once.
"""

from .config import Settings, get_settings
from .domain import (
    BomComponent,
    InventoryItem,
    ItemType,
    MaterialRequirement,
    MovementDirection,
    MovementRecord,
    OrderKind,
    OrderLine,
    OrderStatus,
    PackagingOrder,
    ProductionOrder,
    RecipeIngredient,
)
from .errors import (
    DuplicateItemError,
    DuplicateMovementError,
    InsufficientSpecError,
    InsufficientStockError,
    InvalidTransitionError,
    NotDeletableError,
    NotFoundError,
    OrderLockedError,
    PartialFailureError,
    PersistenceError,
    ProductionERPError,
    ReversalFailedError,
)
from .services import ProductionInventoryCoordinator, build_coordinator
from .storage import SQLiteStore
from .store import InMemoryStore, InventoryStore

__all__ = [
    "Settings",
    "get_settings",
    "BomComponent",
    "InventoryItem",
    "ItemType",
    "MaterialRequirement",
    "MovementDirection",
    "MovementRecord",
    "OrderKind",
    "OrderLine",
    "OrderStatus",
    "PackagingOrder",
    "ProductionOrder",
    "RecipeIngredient",
    "DuplicateItemError",
    "DuplicateMovementError",
    "InsufficientSpecError",
    "InsufficientStockError",
    "InvalidTransitionError",
    "NotDeletableError",
    "NotFoundError",
    "OrderLockedError",
    "PartialFailureError",
    "PersistenceError",
    "ProductionERPError",
    "ReversalFailedError",
    "ProductionInventoryCoordinator",
    "build_coordinator",
    "SQLiteStore",
    "InMemoryStore",
    "InventoryStore",
]
