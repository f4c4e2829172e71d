"""Inventory pool store: the transactional data-access boundary of the engine.

The store holds the four inventory pools, the movement ledger and the order
rows. It applies no business rules beyond refusing to take a quantity below
zero and refusing duplicate movement keys. Everything that must be atomic is
run inside :meth:`InventoryStore.transaction`, which serializes writers for
its whole duration so an availability check and the debits that follow it
cannot interleave with another transition.
"""

from __future__ import annotations

import abc
import copy
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Set, Tuple

from .domain import (
    InventoryItem,
    ItemType,
    MovementRecord,
    Order,
    OrderKind,
    as_utc,
    utcnow,
)
from .errors import (
    DuplicateItemError,
    DuplicateMovementError,
    InsufficientStockError,
    NotFoundError,
    Shortage,
)
from .repository import InMemoryRepository, PagedQuery

QUANTITY_EPSILON = 1e-9
DEFAULT_PAGE_SIZE = 200

ItemKey = Tuple[ItemType, str]
OrderKey = Tuple[OrderKind, str]


class InventoryStore(abc.ABC):
    """Interface every store backend implements."""

    page_size: int = DEFAULT_PAGE_SIZE

    @property
    def supports_transactions(self) -> bool:
        """True when a failed transaction rolls back every write it made."""
        return True

    @abc.abstractmethod
    def transaction(self):
        """Context manager for one serialized unit of work.

        Nested calls join the outermost transaction.
        """

    # ------------------------------------------------------------------
    # Inventory pools
    # ------------------------------------------------------------------
    @abc.abstractmethod
    def add_item(self, item: InventoryItem) -> None: ...

    @abc.abstractmethod
    def save_item(self, item: InventoryItem) -> None:
        """Replace an item's master data (name, recipe, thresholds)."""

    @abc.abstractmethod
    def find_item(self, item_type: ItemType, code: str) -> Optional[InventoryItem]: ...

    def get_item(self, item_type: ItemType, code: str) -> InventoryItem:
        item = self.find_item(item_type, code)
        if item is None:
            raise NotFoundError(item_type.label, code)
        return item

    @abc.abstractmethod
    def list_items(self, item_type: Optional[ItemType] = None) -> List[InventoryItem]: ...

    @abc.abstractmethod
    def remove_item(self, item_type: ItemType, code: str) -> None: ...

    @abc.abstractmethod
    def update_quantity(self, item_type: ItemType, code: str, delta: float) -> float:
        """Apply ``delta`` and return the new quantity.

        Raises ``InsufficientStockError`` instead of going below zero.
        """

    @abc.abstractmethod
    def set_unit_cost(self, item_type: ItemType, code: str, unit_cost: float) -> None: ...

    @abc.abstractmethod
    def adjust_importance(self, item_type: ItemType, code: str, delta: int) -> int: ...

    # ------------------------------------------------------------------
    # Movement ledger
    # ------------------------------------------------------------------
    @abc.abstractmethod
    def insert_movement(self, record: MovementRecord) -> None: ...

    @abc.abstractmethod
    def has_movement(self, idempotency_key: str) -> bool: ...

    @abc.abstractmethod
    def list_movements(
        self,
        *,
        item_code: Optional[str] = None,
        item_type: Optional[ItemType] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        order_id: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> PagedQuery[MovementRecord]: ...

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    @abc.abstractmethod
    def add_order(self, order: Order) -> None: ...

    @abc.abstractmethod
    def save_order(self, order: Order) -> None: ...

    @abc.abstractmethod
    def find_order(self, kind: OrderKind, order_id: str) -> Optional[Order]: ...

    def get_order(self, kind: OrderKind, order_id: str) -> Order:
        order = self.find_order(kind, order_id)
        if order is None:
            raise NotFoundError(f"{kind.value.capitalize()} order", order_id)
        return order

    @abc.abstractmethod
    def remove_order(self, kind: OrderKind, order_id: str) -> None: ...

    @abc.abstractmethod
    def list_orders(self, kind: OrderKind) -> List[Order]:
        """Orders of one kind, newest date first."""

    def close(self) -> None:
        """Release backend resources."""


def _movement_matches(
    record: MovementRecord,
    item_code: Optional[str],
    item_type: Optional[ItemType],
    start: Optional[datetime],
    end: Optional[datetime],
    order_id: Optional[str],
) -> bool:
    if item_code is not None and record.item_code != item_code:
        return False
    if item_type is not None and record.item_type is not item_type:
        return False
    if start is not None and as_utc(record.created_at) < as_utc(start):
        return False
    if end is not None and as_utc(record.created_at) > as_utc(end):
        return False
    if order_id is not None and record.order_id != order_id:
        return False
    return True


class InMemoryStore(InventoryStore):
    """Dictionary-backed store.

    Writers are serialized with a re-entrant lock. With ``atomic=True`` (the
    default) the outermost transaction snapshots all state and restores it if
    the block raises; ``atomic=False`` keeps every write that happened before
    the failure, like a store without multi-row transactions.
    """

    def __init__(self, *, atomic: bool = True, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self.items: InMemoryRepository[ItemKey, InventoryItem] = InMemoryRepository()
        self.orders: InMemoryRepository[OrderKey, Order] = InMemoryRepository()
        self.movements: List[MovementRecord] = []
        self._movement_keys: Set[str] = set()
        self._atomic = atomic
        self._lock = threading.RLock()
        self._depth = 0
        self.page_size = page_size

    @property
    def supports_transactions(self) -> bool:
        return self._atomic

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            snapshot = self._snapshot() if outermost and self._atomic else None
            self._depth += 1
            try:
                yield
            except BaseException:
                if snapshot is not None:
                    self._restore(snapshot)
                raise
            finally:
                self._depth -= 1

    def _snapshot(self):
        return (
            copy.deepcopy(self.items.snapshot()),
            copy.deepcopy(self.orders.snapshot()),
            len(self.movements),
            set(self._movement_keys),
        )

    def _restore(self, snapshot) -> None:
        items, orders, movement_count, keys = snapshot
        self.items.restore(items)
        self.orders.restore(orders)
        del self.movements[movement_count:]
        self._movement_keys = keys

    # Inventory pools ----------------------------------------------------
    def add_item(self, item: InventoryItem) -> None:
        with self._lock:
            if item.key in self.items:
                raise DuplicateItemError(item.item_type.label, item.code)
            self.items.add(item.key, copy.deepcopy(item))

    def save_item(self, item: InventoryItem) -> None:
        with self._lock:
            current = self._stored_item(item.item_type, item.code)
            updated = copy.deepcopy(item)
            # quantity and cost only change through update_quantity/set_unit_cost
            updated.quantity = current.quantity
            updated.unit_cost = current.unit_cost
            updated.updated_at = utcnow()
            self.items.upsert(item.key, updated)

    def _stored_item(self, item_type: ItemType, code: str) -> InventoryItem:
        key = (item_type, code)
        if key not in self.items:
            raise NotFoundError(item_type.label, code)
        return self.items.get(key)

    def find_item(self, item_type: ItemType, code: str) -> Optional[InventoryItem]:
        with self._lock:
            key = (item_type, code)
            if key not in self.items:
                return None
            return copy.deepcopy(self.items.get(key))

    def list_items(self, item_type: Optional[ItemType] = None) -> List[InventoryItem]:
        with self._lock:
            items = [
                copy.deepcopy(item)
                for item in self.items
                if item_type is None or item.item_type is item_type
            ]
        items.sort(key=lambda item: (item.item_type.value, item.code))
        return items

    def remove_item(self, item_type: ItemType, code: str) -> None:
        with self._lock:
            self._stored_item(item_type, code)
            self.items.remove((item_type, code))

    def update_quantity(self, item_type: ItemType, code: str, delta: float) -> float:
        with self._lock:
            item = self._stored_item(item_type, code)
            new_quantity = item.quantity + delta
            if new_quantity < -QUANTITY_EPSILON:
                raise InsufficientStockError(
                    [Shortage(item_type.value, code, -delta, item.quantity)]
                )
            item.quantity = max(new_quantity, 0.0)
            item.updated_at = utcnow()
            return item.quantity

    def set_unit_cost(self, item_type: ItemType, code: str, unit_cost: float) -> None:
        with self._lock:
            item = self._stored_item(item_type, code)
            item.unit_cost = unit_cost
            item.updated_at = utcnow()

    def adjust_importance(self, item_type: ItemType, code: str, delta: int) -> int:
        with self._lock:
            item = self._stored_item(item_type, code)
            item.importance = max(item.importance + delta, 0)
            return item.importance

    # Movement ledger ----------------------------------------------------
    def insert_movement(self, record: MovementRecord) -> None:
        with self._lock:
            if record.idempotency_key in self._movement_keys:
                raise DuplicateMovementError(record.idempotency_key)
            self._movement_keys.add(record.idempotency_key)
            self.movements.append(copy.deepcopy(record))

    def has_movement(self, idempotency_key: str) -> bool:
        with self._lock:
            return idempotency_key in self._movement_keys

    def list_movements(
        self,
        *,
        item_code: Optional[str] = None,
        item_type: Optional[ItemType] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        order_id: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> PagedQuery[MovementRecord]:
        def fetch_page(offset: int, limit: int) -> List[MovementRecord]:
            with self._lock:
                matching = [
                    record
                    for record in self.movements
                    if _movement_matches(record, item_code, item_type, start, end, order_id)
                ]
            return [copy.deepcopy(record) for record in matching[offset : offset + limit]]

        return PagedQuery(fetch_page, page_size=page_size or self.page_size)

    # Orders ---------------------------------------------------------------
    def add_order(self, order: Order) -> None:
        with self._lock:
            self.orders.add((order.kind, order.id), copy.deepcopy(order))

    def save_order(self, order: Order) -> None:
        with self._lock:
            key = (order.kind, order.id)
            if key not in self.orders:
                raise NotFoundError(f"{order.kind.value.capitalize()} order", order.id)
            self.orders.upsert(key, copy.deepcopy(order))

    def find_order(self, kind: OrderKind, order_id: str) -> Optional[Order]:
        with self._lock:
            key = (kind, order_id)
            if key not in self.orders:
                return None
            return copy.deepcopy(self.orders.get(key))

    def remove_order(self, kind: OrderKind, order_id: str) -> None:
        with self._lock:
            key = (kind, order_id)
            if key not in self.orders:
                raise NotFoundError(f"{kind.value.capitalize()} order", order_id)
            self.orders.remove(key)

    def list_orders(self, kind: OrderKind) -> List[Order]:
        with self._lock:
            orders = [copy.deepcopy(order) for order in self.orders if order.kind is kind]
        orders.sort(key=lambda order: (order.date, order.created_at), reverse=True)
        return orders


__all__ = [
    "QUANTITY_EPSILON",
    "InventoryStore",
    "InMemoryStore",
]
