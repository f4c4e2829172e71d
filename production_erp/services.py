"""Service layer that implements the order lifecycle and inventory use-cases."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Tuple, Union
from uuid import uuid4

from .config import Settings, get_settings
from .costing import CostCalculator
from .domain import (
    BomComponent,
    InventoryItem,
    ItemType,
    MaterialRequirement,
    MovementDirection,
    MovementRecord,
    Order,
    OrderKind,
    OrderLine,
    OrderStatus,
    PackagingOrder,
    ProductionOrder,
    RecipeIngredient,
    utcnow,
)
from .errors import (
    InsufficientSpecError,
    InsufficientStockError,
    InvalidTransitionError,
    NotDeletableError,
    OrderLockedError,
)
from .inventory import StockProtocol, merge_requirements
from .ledger import (
    ACTION_COMPLETE,
    ACTION_REVERSE,
    OUTPUT_LINE,
    REASON_ISSUE,
    REASON_OPENING_BALANCE,
    REASON_PACKAGING_CONSUMPTION,
    REASON_PACKAGING_OUTPUT,
    REASON_PRODUCTION_CONSUMPTION,
    REASON_PRODUCTION_OUTPUT,
    REASON_RECEIPT,
    REASON_REVERSAL,
    MovementLedger,
    document_key,
    movement_key,
)
from .lifecycle import TransitionEffect, is_deletable, is_open, parse_status, plan_transition
from .logging_config import configure_logging
from .reporting import (
    InventoryReports,
    ItemActivity,
    ItemMovementReport,
    MovementSummary,
    ProductionStats,
)
from .storage import SQLiteStore
from .store import InMemoryStore, InventoryStore
from .sync import MovementSyncJob, SyncReport

logger = logging.getLogger(__name__)

_CONSUMPTION_REASONS = {
    OrderKind.PRODUCTION: REASON_PRODUCTION_CONSUMPTION,
    OrderKind.PACKAGING: REASON_PACKAGING_CONSUMPTION,
}
_OUTPUT_REASONS = {
    OrderKind.PRODUCTION: REASON_PRODUCTION_OUTPUT,
    OrderKind.PACKAGING: REASON_PACKAGING_OUTPUT,
}
# Pool whose items gain importance when an order of the kind completes.
_IMPORTANCE_POOLS = {
    OrderKind.PRODUCTION: ItemType.RAW,
    OrderKind.PACKAGING: ItemType.PACKAGING,
}


def format_order_code(prefix: str, day: date, sequence: int) -> str:
    return f"{prefix}-{day:%Y%m%d}-{sequence:03d}"


def _order_label(kind: OrderKind) -> str:
    return f"{kind.value.capitalize()} order"


def _log_context(order: Order) -> Dict[str, str]:
    return {"order_id": order.id, "order_code": order.code, "order_kind": order.kind.value}


class ProductionInventoryCoordinator:
    """Facade that exposes the production and inventory use-cases to clients.

    Every status change is one unit of work inside a store transaction: the
    order and its frozen requirement snapshot are loaded, availability is
    checked for the whole set, inputs are consumed, the output is produced at
    the computed unit cost and the order is saved. A failure anywhere leaves
    stock, ledger and order exactly as they were.
    """

    def __init__(
        self,
        store: InventoryStore,
        *,
        ledger: Optional[MovementLedger] = None,
        protocol: Optional[StockProtocol] = None,
        costs: Optional[CostCalculator] = None,
        reports: Optional[InventoryReports] = None,
        production_code_prefix: str = "PRD",
        packaging_code_prefix: str = "PKG",
    ) -> None:
        self.store = store
        self.ledger = ledger or MovementLedger(store)
        self.protocol = protocol or StockProtocol(store, self.ledger)
        self.costs = costs or CostCalculator(store)
        self.reports = reports or InventoryReports(store)
        self.sync_job = MovementSyncJob(store, self.ledger)
        self._code_prefixes = {
            OrderKind.PRODUCTION: production_code_prefix,
            OrderKind.PACKAGING: packaging_code_prefix,
        }

    def close(self) -> None:
        self.store.close()

    # ------------------------------------------------------------------
    # Master data
    # ------------------------------------------------------------------
    def register_item(
        self,
        item_type: Union[ItemType, str],
        code: str,
        name: str,
        unit: str,
        *,
        quantity: float = 0.0,
        unit_cost: float = 0.0,
        min_stock: float = 0.0,
        ingredients: Optional[Sequence[RecipeIngredient]] = None,
        semi_finished: Optional[BomComponent] = None,
        packaging: Optional[Sequence[BomComponent]] = None,
    ) -> InventoryItem:
        """Add an item to its pool. An opening quantity is booked as a movement."""
        item_type = ItemType(item_type)
        if quantity < 0:
            raise ValueError("Opening quantity must not be negative")
        if ingredients and item_type is not ItemType.SEMI_FINISHED:
            raise ValueError("Only semi-finished products have a recipe")
        if (semi_finished is not None or packaging) and item_type is not ItemType.FINISHED:
            raise ValueError("Only finished products have a bill of materials")
        item = InventoryItem(
            code=code,
            name=name,
            item_type=item_type,
            unit=unit,
            unit_cost=unit_cost,
            min_stock=min_stock,
            ingredients=list(ingredients or ()),
            semi_finished=semi_finished,
            packaging=list(packaging or ()),
        )
        with self.store.transaction():
            self.store.add_item(item)
            if quantity > 0:
                self.protocol.produce(
                    item_type,
                    code,
                    quantity,
                    reason=REASON_OPENING_BALANCE,
                    idempotency_key=f"opening:{item_type.value}:{code}:{uuid4().hex}",
                )
            stored = self.store.get_item(item_type, code)
        logger.info("Registered %s %s (%s)", item_type.value, code, name)
        return stored

    def set_recipe(self, code: str, ingredients: Sequence[RecipeIngredient]) -> InventoryItem:
        """Replace the raw material recipe of a semi-finished product."""
        for ingredient in ingredients:
            if ingredient.percentage <= 0:
                raise ValueError(f"Percentage of {ingredient.code!r} must be positive")
        with self.store.transaction():
            item = self.store.get_item(ItemType.SEMI_FINISHED, code)
            for ingredient in ingredients:
                raw = self.store.get_item(ItemType.RAW, ingredient.code)
                ingredient.name = ingredient.name or raw.name
            item.ingredients = list(ingredients)
            self.store.save_item(item)
            return self.store.get_item(ItemType.SEMI_FINISHED, code)

    def set_bill_of_materials(
        self,
        code: str,
        semi_finished: BomComponent,
        packaging: Sequence[BomComponent] = (),
    ) -> InventoryItem:
        """Replace the per-unit components of a finished product."""
        components = [semi_finished, *packaging]
        for component in components:
            if component.quantity <= 0:
                raise ValueError(f"Quantity of {component.code!r} must be positive")
        with self.store.transaction():
            item = self.store.get_item(ItemType.FINISHED, code)
            semi = self.store.get_item(ItemType.SEMI_FINISHED, semi_finished.code)
            semi_finished.name = semi_finished.name or semi.name
            for component in packaging:
                material = self.store.get_item(ItemType.PACKAGING, component.code)
                component.name = component.name or material.name
            item.semi_finished = semi_finished
            item.packaging = list(packaging)
            self.store.save_item(item)
            return self.store.get_item(ItemType.FINISHED, code)

    def get_item(self, item_type: Union[ItemType, str], code: str) -> InventoryItem:
        return self.store.get_item(ItemType(item_type), code)

    def list_items(self, item_type: Union[ItemType, str, None] = None) -> List[InventoryItem]:
        return self.store.list_items(ItemType(item_type) if item_type is not None else None)

    def remove_item(self, item_type: Union[ItemType, str], code: str) -> None:
        """Delete an item unless an open order still refers to it."""
        item_type = ItemType(item_type)
        with self.store.transaction():
            self.store.get_item(item_type, code)
            for kind in OrderKind:
                for order in self.store.list_orders(kind):
                    if not is_open(order.status):
                        continue
                    referenced = {(line.item_type, line.code) for line in order.requirements()}
                    referenced.add((kind.output_type, order.product_code))
                    if (item_type, code) in referenced:
                        raise NotDeletableError(
                            item_type.label, code, f"referenced by open order {order.code}"
                        )
            self.store.remove_item(item_type, code)
        logger.info("Removed %s %s", item_type.value, code)

    # ------------------------------------------------------------------
    # Order management
    # ------------------------------------------------------------------
    def _next_order_code(self, kind: OrderKind, day: date) -> str:
        prefix = self._code_prefixes[kind]
        stem = format_order_code(prefix, day, 0)[:-3]
        existing = {order.code for order in self.store.list_orders(kind)}
        sequence = sum(1 for code in existing if code.startswith(stem)) + 1
        code = format_order_code(prefix, day, sequence)
        while code in existing:
            sequence += 1
            code = format_order_code(prefix, day, sequence)
        return code

    def _production_lines(self, product: InventoryItem, quantity: float) -> List[OrderLine]:
        if not product.ingredients:
            raise InsufficientSpecError(product.code, "recipe has no ingredients")
        lines: List[OrderLine] = []
        for ingredient in product.ingredients:
            raw = self.store.find_item(ItemType.RAW, ingredient.code)
            if raw is None:
                raise InsufficientSpecError(
                    product.code, f"raw material {ingredient.code!r} does not exist"
                )
            lines.append(
                OrderLine(
                    code=raw.code,
                    required_quantity=ingredient.percentage / 100.0 * quantity,
                    name=raw.name,
                )
            )
        return lines

    def _packaging_lines(
        self, product: InventoryItem, quantity: float
    ) -> Tuple[OrderLine, List[OrderLine]]:
        if product.semi_finished is None:
            raise InsufficientSpecError(product.code, "no semi-finished product assigned")
        semi = self.store.find_item(ItemType.SEMI_FINISHED, product.semi_finished.code)
        if semi is None:
            raise InsufficientSpecError(
                product.code,
                f"semi-finished product {product.semi_finished.code!r} does not exist",
            )
        semi_line = OrderLine(
            code=semi.code,
            required_quantity=product.semi_finished.quantity * quantity,
            name=semi.name,
        )
        packaging_lines: List[OrderLine] = []
        for component in product.packaging:
            material = self.store.find_item(ItemType.PACKAGING, component.code)
            if material is None:
                raise InsufficientSpecError(
                    product.code, f"packaging material {component.code!r} does not exist"
                )
            packaging_lines.append(
                OrderLine(
                    code=material.code,
                    required_quantity=component.quantity * quantity,
                    name=material.name,
                )
            )
        return semi_line, packaging_lines

    def create_order(
        self,
        kind: Union[OrderKind, str],
        product_code: str,
        quantity: float,
        date: Optional[date] = None,
    ) -> Order:
        """Create a pending order with its requirement snapshot frozen from the current BOM."""
        kind = OrderKind(kind)
        if quantity <= 0:
            raise ValueError("Order quantity must be positive")
        order_date = date or utcnow().date()
        with self.store.transaction():
            product = self.store.get_item(kind.output_type, product_code)
            code = self._next_order_code(kind, order_date)
            order: Order
            if kind is OrderKind.PRODUCTION:
                order = ProductionOrder(
                    id=str(uuid4()),
                    code=code,
                    product_code=product.code,
                    product_name=product.name,
                    quantity=quantity,
                    unit=product.unit,
                    date=order_date,
                    ingredients=self._production_lines(product, quantity),
                    total_cost=product.unit_cost * quantity,
                )
            else:
                semi_line, packaging_lines = self._packaging_lines(product, quantity)
                order = PackagingOrder(
                    id=str(uuid4()),
                    code=code,
                    product_code=product.code,
                    product_name=product.name,
                    quantity=quantity,
                    unit=product.unit,
                    date=order_date,
                    semi_finished=semi_line,
                    packaging_materials=packaging_lines,
                    total_cost=product.unit_cost * quantity,
                )
            self.store.add_order(order)
        logger.info(
            "Created %s order %s for %g %s of %s",
            kind.value,
            order.code,
            quantity,
            order.unit,
            product_code,
            extra=_log_context(order),
        )
        return order

    def update_order(
        self,
        kind: Union[OrderKind, str],
        order_id: str,
        *,
        quantity: Optional[float] = None,
        date: Optional[date] = None,
    ) -> Order:
        """Rebuild an order's snapshot from the current BOM.

        Completed orders are locked; reverse them first.
        """
        kind = OrderKind(kind)
        if quantity is not None and quantity <= 0:
            raise ValueError("Order quantity must be positive")
        with self.store.transaction():
            order = self.store.get_order(kind, order_id)
            if order.status is OrderStatus.COMPLETED:
                raise OrderLockedError(order.code, order.status.value)
            product = self.store.get_item(kind.output_type, order.product_code)
            new_quantity = quantity if quantity is not None else order.quantity
            if isinstance(order, ProductionOrder):
                order.ingredients = self._production_lines(product, new_quantity)
            else:
                order.semi_finished, order.packaging_materials = self._packaging_lines(
                    product, new_quantity
                )
            order.quantity = new_quantity
            order.product_name = product.name
            order.unit = product.unit
            order.total_cost = product.unit_cost * new_quantity
            if date is not None:
                order.date = date
            order.updated_at = utcnow()
            self.store.save_order(order)
        logger.info("Updated order %s", order.code, extra=_log_context(order))
        return order

    def delete_order(self, kind: Union[OrderKind, str], order_id: str) -> None:
        kind = OrderKind(kind)
        with self.store.transaction():
            order = self.store.get_order(kind, order_id)
            if not is_deletable(order.status):
                logger.warning(
                    "Refused to delete order %s in status %s",
                    order.code,
                    order.status.value,
                    extra=_log_context(order),
                )
                raise NotDeletableError(
                    _order_label(kind), order.code, f"status is {order.status.value}"
                )
            self.store.remove_order(kind, order_id)
        logger.info("Deleted order %s", order.code, extra=_log_context(order))

    def get_orders(self, kind: Union[OrderKind, str]) -> List[Order]:
        return self.store.list_orders(OrderKind(kind))

    def get_order(self, kind: Union[OrderKind, str], order_id: str) -> Order:
        return self.store.get_order(OrderKind(kind), order_id)

    # ------------------------------------------------------------------
    # Order lifecycle
    # ------------------------------------------------------------------
    def transition_order(
        self,
        kind: Union[OrderKind, str],
        order_id: str,
        new_status: Union[OrderStatus, str],
    ) -> Order:
        """Move an order to ``new_status`` and apply the inventory effect of the change."""
        kind = OrderKind(kind)
        requested = parse_status(new_status)
        with self.store.transaction():
            order = self.store.get_order(kind, order_id)
            previous = order.status
            try:
                effect = plan_transition(order.code, previous, requested)
            except InvalidTransitionError:
                logger.warning(
                    "Rejected transition of %s from %s to %s",
                    order.code,
                    previous.value,
                    requested.value,
                    extra=_log_context(order),
                )
                raise
            if previous is requested:
                logger.debug("Order %s already %s", order.code, previous.value)
                return order
            try:
                if effect is TransitionEffect.COMPLETE:
                    self._complete(order)
                elif effect is TransitionEffect.REVERSE:
                    self._reverse(order, requested)
                else:
                    order.status = requested
                    order.updated_at = utcnow()
                    self.store.save_order(order)
            except InsufficientStockError as exc:
                logger.warning(
                    "Transition of %s from %s to %s refused: %s",
                    order.code,
                    previous.value,
                    requested.value,
                    exc,
                    extra=_log_context(order),
                )
                raise
        logger.info(
            "Order %s moved from %s to %s",
            order.code,
            previous.value,
            requested.value,
            extra=_log_context(order),
        )
        return order

    def _complete(self, order: Order) -> None:
        kind = order.kind
        cycle = order.cycle + 1
        lines = merge_requirements(order.requirements())
        output = self.store.get_item(kind.output_type, order.product_code)
        cost = self.costs.cost_of_run(output, lines, order.quantity)

        applied: List[MovementRecord] = self.protocol.consume(
            lines,
            reason=_CONSUMPTION_REASONS[kind],
            key_prefix=f"{order.id}:{ACTION_COMPLETE}:{cycle}",
            order_id=order.id,
        )
        bumped: List[Tuple[ItemType, str, int]] = []
        try:
            applied.append(
                self.protocol.produce(
                    kind.output_type,
                    order.product_code,
                    order.quantity,
                    cost.unit_cost,
                    reason=_OUTPUT_REASONS[kind],
                    idempotency_key=movement_key(order.id, ACTION_COMPLETE, cycle, OUTPUT_LINE),
                    order_id=order.id,
                )
            )
            self._adjust_importance(kind, lines, 1, bumped)
            order.total_cost = cost.total_cost
            order.cycle = cycle
            order.status = OrderStatus.COMPLETED
            order.updated_at = utcnow()
            self.store.save_order(order)
        except Exception as exc:
            self._undo_importance(bumped)
            self.protocol.abort(f"complete {order.code}", applied, exc)
        if cost.used_stored_cost:
            logger.info(
                "Order %s inputs have no cost; kept stored unit cost %.4f of %s",
                order.code,
                cost.unit_cost,
                order.product_code,
                extra=_log_context(order),
            )

    def _reverse(self, order: Order, requested: OrderStatus) -> None:
        kind = order.kind
        cycle = order.cycle
        lines = merge_requirements(order.requirements())
        applied: List[MovementRecord] = [
            self.protocol.remove(
                kind.output_type,
                order.product_code,
                order.quantity,
                reason=REASON_REVERSAL,
                idempotency_key=movement_key(order.id, ACTION_REVERSE, cycle, OUTPUT_LINE),
                order_id=order.id,
            )
        ]
        bumped: List[Tuple[ItemType, str, int]] = []
        try:
            applied.extend(
                self.protocol.release(
                    lines,
                    reason=REASON_REVERSAL,
                    key_prefix=f"{order.id}:{ACTION_REVERSE}:{cycle}",
                    order_id=order.id,
                )
            )
            self._adjust_importance(kind, lines, -1, bumped)
            order.status = requested
            order.updated_at = utcnow()
            self.store.save_order(order)
        except Exception as exc:
            self._undo_importance(bumped)
            self.protocol.abort(f"reverse {order.code}", applied, exc)

    def _adjust_importance(
        self,
        kind: OrderKind,
        lines: Sequence[MaterialRequirement],
        delta: int,
        adjusted: List[Tuple[ItemType, str, int]],
    ) -> None:
        """Bump importance per line, appending each applied change to ``adjusted``."""
        pool = _IMPORTANCE_POOLS[kind]
        for line in lines:
            if line.item_type is pool:
                self.store.adjust_importance(pool, line.code, delta)
                adjusted.append((pool, line.code, delta))

    def _undo_importance(self, adjusted: Sequence[Tuple[ItemType, str, int]]) -> None:
        if self.store.supports_transactions:
            return
        for item_type, code, delta in adjusted:
            self.store.adjust_importance(item_type, code, -delta)

    # ------------------------------------------------------------------
    # Commercial documents
    # ------------------------------------------------------------------
    def receive_stock(
        self,
        item_type: Union[ItemType, str],
        code: str,
        quantity: float,
        document_ref: str,
        unit_cost: Optional[float] = None,
    ) -> Optional[MovementRecord]:
        """Book goods received on a purchase document.

        Returns ``None`` when the document was already booked for this item.
        """
        item_type = ItemType(item_type)
        key = document_key(document_ref, MovementDirection.IN, item_type, code)
        with self.store.transaction():
            if self.ledger.contains(key):
                logger.info("Receipt %s for %s:%s already booked", document_ref, item_type.value, code)
                return None
            return self.protocol.produce(
                item_type,
                code,
                quantity,
                unit_cost,
                reason=REASON_RECEIPT,
                idempotency_key=key,
                document_ref=document_ref,
            )

    def issue_stock(
        self,
        item_type: Union[ItemType, str],
        code: str,
        quantity: float,
        document_ref: str,
    ) -> Optional[MovementRecord]:
        """Book goods leaving on a sales document. Idempotent per document and item."""
        item_type = ItemType(item_type)
        if quantity <= 0:
            raise ValueError("Quantity must be positive")
        prefix = document_key(document_ref, MovementDirection.OUT, item_type, code)
        with self.store.transaction():
            if self.ledger.contains(f"{prefix}:0"):
                logger.info("Issue %s for %s:%s already booked", document_ref, item_type.value, code)
                return None
            records = self.protocol.consume(
                [MaterialRequirement(item_type, code, quantity)],
                reason=REASON_ISSUE,
                key_prefix=prefix,
                document_ref=document_ref,
            )
        return records[0]

    # ------------------------------------------------------------------
    # Costing and importance
    # ------------------------------------------------------------------
    def recalculate_all_costs(self) -> Dict[str, float]:
        return self.costs.recalculate_all_costs()

    def recalculate_costs_for_raw_material(self, raw_code: str) -> Dict[str, float]:
        return self.costs.recalculate_costs_for_raw_material(raw_code)

    def recalculate_importance(self) -> Dict[str, int]:
        """Derive raw and packaging importance from the bills of materials.

        Raw materials score ``products using it * average percentage / 10``;
        packaging materials score ``products using it * average quantity``.
        """
        raw_usage: Dict[str, List[float]] = defaultdict(list)
        packaging_usage: Dict[str, List[float]] = defaultdict(list)
        with self.store.transaction():
            for semi in self.store.list_items(ItemType.SEMI_FINISHED):
                for ingredient in semi.ingredients:
                    raw_usage[ingredient.code].append(ingredient.percentage)
            for finished in self.store.list_items(ItemType.FINISHED):
                for component in finished.packaging:
                    packaging_usage[component.code].append(component.quantity)

            result: Dict[str, int] = {}
            for item_type, usage, scale in (
                (ItemType.RAW, raw_usage, 10.0),
                (ItemType.PACKAGING, packaging_usage, 1.0),
            ):
                for item in self.store.list_items(item_type):
                    values = usage.get(item.code, [])
                    importance = 0
                    if values:
                        average = sum(values) / len(values)
                        importance = round(len(values) * average / scale)
                    self.store.adjust_importance(item_type, item.code, importance - item.importance)
                    result[f"{item_type.value}:{item.code}"] = importance
        logger.info("Recalculated importance of %d item(s)", len(result))
        return result

    # ------------------------------------------------------------------
    # Reports and reconciliation
    # ------------------------------------------------------------------
    def movements_summary(
        self, *, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> MovementSummary:
        return self.reports.movements_summary(start=start, end=end)

    def item_movement_report(
        self,
        item_code: str,
        *,
        item_type: Union[ItemType, str, None] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> ItemMovementReport:
        return self.reports.item_movement_report(
            item_code,
            item_type=ItemType(item_type) if item_type is not None else None,
            start=start,
            end=end,
        )

    def most_active_items(
        self,
        limit: int = 10,
        *,
        item_type: Union[ItemType, str, None] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[ItemActivity]:
        return self.reports.most_active_items(
            limit,
            item_type=ItemType(item_type) if item_type is not None else None,
            start=start,
            end=end,
        )

    def production_stats(self, *, today: Optional[date] = None) -> ProductionStats:
        return self.reports.production_stats(today=today)

    def low_stock_items(self, item_type: Union[ItemType, str, None] = None) -> List[InventoryItem]:
        return self.reports.low_stock_items(ItemType(item_type) if item_type is not None else None)

    def sync_movements(self) -> SyncReport:
        return self.sync_job.run()


def build_coordinator(settings: Optional[Settings] = None) -> ProductionInventoryCoordinator:
    """Wire store, ledger, protocol and coordinator once at process start."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_output=settings.log_json)
    store: InventoryStore
    if settings.uses_memory_store:
        store = InMemoryStore(page_size=settings.movement_page_size)
    else:
        store = SQLiteStore(settings.database_path, page_size=settings.movement_page_size)
    coordinator = ProductionInventoryCoordinator(
        store,
        production_code_prefix=settings.production_code_prefix,
        packaging_code_prefix=settings.packaging_code_prefix,
    )
    if settings.seed_demo_data:
        from .sample_usage import seed_demo_catalog

        seed_demo_catalog(coordinator)
    logger.info(
        "Coordinator ready (environment=%s, store=%s)",
        settings.environment,
        type(store).__name__,
    )
    return coordinator


__all__ = [
    "ProductionInventoryCoordinator",
    "build_coordinator",
    "format_order_code",
]
