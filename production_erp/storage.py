"""SQLite-backed persistence for the inventory pools, ledger and orders."""

from __future__ import annotations

import pickle
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, List, Optional, Sequence

from .domain import (
    InventoryItem,
    ItemType,
    MovementDirection,
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
    PersistenceError,
    Shortage,
)
from .repository import PagedQuery
from .store import DEFAULT_PAGE_SIZE, QUANTITY_EPSILON, InventoryStore

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS inventory_items (
        item_type TEXT NOT NULL,
        code TEXT NOT NULL,
        name TEXT NOT NULL,
        unit TEXT NOT NULL,
        quantity REAL NOT NULL DEFAULT 0 CHECK (quantity >= 0),
        unit_cost REAL NOT NULL DEFAULT 0,
        min_stock REAL NOT NULL DEFAULT 0,
        importance INTEGER NOT NULL DEFAULT 0,
        bom BLOB NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (item_type, code)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS inventory_movements (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        item_code TEXT NOT NULL,
        item_type TEXT NOT NULL,
        direction TEXT NOT NULL CHECK (direction IN ('in', 'out')),
        quantity REAL NOT NULL CHECK (quantity > 0),
        reason TEXT NOT NULL,
        balance_after REAL NOT NULL,
        idempotency_key TEXT NOT NULL UNIQUE,
        order_id TEXT,
        document_ref TEXT,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_movements_item ON inventory_movements (item_type, item_code)",
    "CREATE INDEX IF NOT EXISTS ix_movements_created ON inventory_movements (created_at)",
    "CREATE INDEX IF NOT EXISTS ix_movements_order ON inventory_movements (order_id)",
    """
    CREATE TABLE IF NOT EXISTS orders (
        kind TEXT NOT NULL,
        id TEXT NOT NULL,
        code TEXT NOT NULL UNIQUE,
        status TEXT NOT NULL,
        order_date TEXT NOT NULL,
        created_at TEXT NOT NULL,
        payload BLOB NOT NULL,
        PRIMARY KEY (kind, id)
    )
    """,
)

_ITEM_COLUMNS = (
    "item_type, code, name, unit, quantity, unit_cost, min_stock, importance, "
    "bom, created_at, updated_at"
)
_MOVEMENT_COLUMNS = (
    "id, item_code, item_type, direction, quantity, reason, balance_after, "
    "idempotency_key, order_id, document_ref, created_at"
)


def _timestamp(value: datetime) -> str:
    # fixed-width UTC text so SQL comparisons follow time order
    return as_utc(value).isoformat(timespec="microseconds")


def _order_label(kind: OrderKind) -> str:
    return f"{kind.value.capitalize()} order"


class SQLiteStore(InventoryStore):
    """Store implementation on top of a single SQLite connection.

    The connection runs in autocommit mode and transactions are opened
    explicitly with ``BEGIN IMMEDIATE``, which takes the database write lock
    before the first read. A transition's availability check and its debits
    therefore run under the same lock.
    """

    def __init__(self, path: str, *, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        try:
            connection = sqlite3.connect(
                path, check_same_thread=False, isolation_level=None, timeout=30.0
            )
        except sqlite3.Error as exc:
            raise PersistenceError("connect", exc) from exc
        connection.row_factory = sqlite3.Row
        self._connection = connection
        self._lock = threading.RLock()
        self._depth = 0
        self.page_size = page_size
        with self.transaction():
            for statement in SCHEMA:
                self._execute(statement)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._rollback()
                raise
            else:
                self._depth -= 1
                if outermost:
                    self._execute("COMMIT")

    def _rollback(self) -> None:
        try:
            self._connection.execute("ROLLBACK")
        except sqlite3.Error as exc:
            raise PersistenceError("rollback", exc) from exc

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._connection.execute(sql, params)
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as exc:
            raise PersistenceError(sql.split()[0].lower(), exc) from exc

    def close(self) -> None:
        self._connection.close()

    def __enter__(self) -> "SQLiteStore":
        return self

    def __exit__(self, exc_type, exc, traceback) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Inventory pools
    # ------------------------------------------------------------------
    @staticmethod
    def _item_from_row(row: sqlite3.Row) -> InventoryItem:
        ingredients, semi_finished, packaging = pickle.loads(row["bom"])
        return InventoryItem(
            code=row["code"],
            name=row["name"],
            item_type=ItemType(row["item_type"]),
            unit=row["unit"],
            quantity=row["quantity"],
            unit_cost=row["unit_cost"],
            min_stock=row["min_stock"],
            importance=row["importance"],
            ingredients=ingredients,
            semi_finished=semi_finished,
            packaging=packaging,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _bom_payload(item: InventoryItem) -> bytes:
        return pickle.dumps((item.ingredients, item.semi_finished, item.packaging))

    def add_item(self, item: InventoryItem) -> None:
        with self.transaction():
            if self.find_item(item.item_type, item.code) is not None:
                raise DuplicateItemError(item.item_type.label, item.code)
            self._execute(
                f"INSERT INTO inventory_items ({_ITEM_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    item.item_type.value,
                    item.code,
                    item.name,
                    item.unit,
                    item.quantity,
                    item.unit_cost,
                    item.min_stock,
                    item.importance,
                    self._bom_payload(item),
                    item.created_at.isoformat(),
                    item.updated_at.isoformat(),
                ),
            )

    def save_item(self, item: InventoryItem) -> None:
        with self.transaction():
            cursor = self._execute(
                "UPDATE inventory_items SET name = ?, unit = ?, min_stock = ?, "
                "importance = ?, bom = ?, updated_at = ? "
                "WHERE item_type = ? AND code = ?",
                (
                    item.name,
                    item.unit,
                    item.min_stock,
                    item.importance,
                    self._bom_payload(item),
                    utcnow().isoformat(),
                    item.item_type.value,
                    item.code,
                ),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(item.item_type.label, item.code)

    def find_item(self, item_type: ItemType, code: str) -> Optional[InventoryItem]:
        with self._lock:
            row = self._execute(
                f"SELECT {_ITEM_COLUMNS} FROM inventory_items "
                "WHERE item_type = ? AND code = ?",
                (item_type.value, code),
            ).fetchone()
        return self._item_from_row(row) if row is not None else None

    def list_items(self, item_type: Optional[ItemType] = None) -> List[InventoryItem]:
        sql = f"SELECT {_ITEM_COLUMNS} FROM inventory_items"
        params: List[Any] = []
        if item_type is not None:
            sql += " WHERE item_type = ?"
            params.append(item_type.value)
        sql += " ORDER BY item_type, code"
        with self._lock:
            rows = self._execute(sql, params).fetchall()
        return [self._item_from_row(row) for row in rows]

    def remove_item(self, item_type: ItemType, code: str) -> None:
        with self.transaction():
            cursor = self._execute(
                "DELETE FROM inventory_items WHERE item_type = ? AND code = ?",
                (item_type.value, code),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(item_type.label, code)

    def update_quantity(self, item_type: ItemType, code: str, delta: float) -> float:
        with self.transaction():
            cursor = self._execute(
                "UPDATE inventory_items SET quantity = MAX(quantity + ?, 0), updated_at = ? "
                "WHERE item_type = ? AND code = ? AND quantity + ? >= ?",
                (delta, utcnow().isoformat(), item_type.value, code, delta, -QUANTITY_EPSILON),
            )
            current = self.find_item(item_type, code)
            if current is None:
                raise NotFoundError(item_type.label, code)
            if cursor.rowcount == 0:
                raise InsufficientStockError(
                    [Shortage(item_type.value, code, -delta, current.quantity)]
                )
            return current.quantity

    def set_unit_cost(self, item_type: ItemType, code: str, unit_cost: float) -> None:
        with self.transaction():
            cursor = self._execute(
                "UPDATE inventory_items SET unit_cost = ?, updated_at = ? "
                "WHERE item_type = ? AND code = ?",
                (unit_cost, utcnow().isoformat(), item_type.value, code),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(item_type.label, code)

    def adjust_importance(self, item_type: ItemType, code: str, delta: int) -> int:
        with self.transaction():
            cursor = self._execute(
                "UPDATE inventory_items SET importance = MAX(importance + ?, 0) "
                "WHERE item_type = ? AND code = ?",
                (delta, item_type.value, code),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(item_type.label, code)
            row = self._execute(
                "SELECT importance FROM inventory_items WHERE item_type = ? AND code = ?",
                (item_type.value, code),
            ).fetchone()
            return int(row["importance"])

    # ------------------------------------------------------------------
    # Movement ledger
    # ------------------------------------------------------------------
    @staticmethod
    def _movement_from_row(row: sqlite3.Row) -> MovementRecord:
        return MovementRecord(
            id=row["id"],
            item_code=row["item_code"],
            item_type=ItemType(row["item_type"]),
            direction=MovementDirection(row["direction"]),
            quantity=row["quantity"],
            reason=row["reason"],
            balance_after=row["balance_after"],
            idempotency_key=row["idempotency_key"],
            order_id=row["order_id"],
            document_ref=row["document_ref"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def insert_movement(self, record: MovementRecord) -> None:
        with self.transaction():
            if self.has_movement(record.idempotency_key):
                raise DuplicateMovementError(record.idempotency_key)
            try:
                self._execute(
                    f"INSERT INTO inventory_movements ({_MOVEMENT_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.id,
                        record.item_code,
                        record.item_type.value,
                        record.direction.value,
                        record.quantity,
                        record.reason,
                        record.balance_after,
                        record.idempotency_key,
                        record.order_id,
                        record.document_ref,
                        _timestamp(record.created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise PersistenceError("insert movement", exc) from exc

    def has_movement(self, idempotency_key: str) -> bool:
        with self._lock:
            row = self._execute(
                "SELECT 1 FROM inventory_movements WHERE idempotency_key = ? LIMIT 1",
                (idempotency_key,),
            ).fetchone()
        return row is not None

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
        clauses: List[str] = []
        params: List[Any] = []
        if item_code is not None:
            clauses.append("item_code = ?")
            params.append(item_code)
        if item_type is not None:
            clauses.append("item_type = ?")
            params.append(item_type.value)
        if start is not None:
            clauses.append("created_at >= ?")
            params.append(_timestamp(start))
        if end is not None:
            clauses.append("created_at <= ?")
            params.append(_timestamp(end))
        if order_id is not None:
            clauses.append("order_id = ?")
            params.append(order_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = (
            f"SELECT {_MOVEMENT_COLUMNS} FROM inventory_movements{where} "
            "ORDER BY seq LIMIT ? OFFSET ?"
        )

        def fetch_page(offset: int, limit: int) -> List[MovementRecord]:
            with self._lock:
                rows = self._execute(sql, (*params, limit, offset)).fetchall()
            return [self._movement_from_row(row) for row in rows]

        return PagedQuery(fetch_page, page_size=page_size or self.page_size)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def add_order(self, order: Order) -> None:
        with self.transaction():
            try:
                self._execute(
                    "INSERT INTO orders (kind, id, code, status, order_date, created_at, payload) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        order.kind.value,
                        order.id,
                        order.code,
                        order.status.value,
                        order.date.isoformat(),
                        order.created_at.isoformat(),
                        pickle.dumps(order),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise PersistenceError("insert order", exc) from exc

    def save_order(self, order: Order) -> None:
        with self.transaction():
            cursor = self._execute(
                "UPDATE orders SET status = ?, order_date = ?, payload = ? "
                "WHERE kind = ? AND id = ?",
                (
                    order.status.value,
                    order.date.isoformat(),
                    pickle.dumps(order),
                    order.kind.value,
                    order.id,
                ),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(_order_label(order.kind), order.id)

    def find_order(self, kind: OrderKind, order_id: str) -> Optional[Order]:
        with self._lock:
            row = self._execute(
                "SELECT payload FROM orders WHERE kind = ? AND id = ?",
                (kind.value, order_id),
            ).fetchone()
        return pickle.loads(row["payload"]) if row is not None else None

    def remove_order(self, kind: OrderKind, order_id: str) -> None:
        with self.transaction():
            cursor = self._execute(
                "DELETE FROM orders WHERE kind = ? AND id = ?", (kind.value, order_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(_order_label(kind), order_id)

    def list_orders(self, kind: OrderKind) -> List[Order]:
        with self._lock:
            rows = self._execute(
                "SELECT payload FROM orders WHERE kind = ? "
                "ORDER BY order_date DESC, created_at DESC",
                (kind.value,),
            ).fetchall()
        return [pickle.loads(row["payload"]) for row in rows]


__all__ = ["SQLiteStore"]
