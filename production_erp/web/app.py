"""FastAPI-based JSON interface for the production ERP."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..config import Settings, get_settings
from ..domain import (
    BomComponent,
    ItemType,
    MovementRecord,
    Order,
    OrderKind,
    OrderStatus,
    RecipeIngredient,
)
from ..errors import (
    DuplicateItemError,
    InsufficientSpecError,
    InsufficientStockError,
    InvalidTransitionError,
    NotDeletableError,
    NotFoundError,
    OrderLockedError,
    ProductionERPError,
)
from ..services import ProductionInventoryCoordinator, build_coordinator

logger = logging.getLogger(__name__)

# Checked in order; the first matching class wins.
ERROR_STATUS = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (NotDeletableError, status.HTTP_409_CONFLICT),
    (DuplicateItemError, status.HTTP_409_CONFLICT),
    (InsufficientStockError, status.HTTP_409_CONFLICT),
    (OrderLockedError, status.HTTP_409_CONFLICT),
    (InsufficientSpecError, 422),
)


def status_for(exc: ProductionERPError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


class IngredientIn(BaseModel):
    code: str
    percentage: float = Field(gt=0, le=100)


class ComponentIn(BaseModel):
    code: str
    quantity: float = Field(gt=0)


class ItemCreate(BaseModel):
    item_type: ItemType
    code: str = Field(min_length=1)
    name: str = Field(min_length=1)
    unit: str = Field(min_length=1)
    quantity: float = Field(default=0.0, ge=0)
    unit_cost: float = Field(default=0.0, ge=0)
    min_stock: float = Field(default=0.0, ge=0)
    ingredients: List[IngredientIn] = Field(default_factory=list)
    semi_finished: Optional[ComponentIn] = None
    packaging: List[ComponentIn] = Field(default_factory=list)


class RecipeUpdate(BaseModel):
    ingredients: List[IngredientIn]


class BomUpdate(BaseModel):
    semi_finished: ComponentIn
    packaging: List[ComponentIn] = Field(default_factory=list)


class OrderCreate(BaseModel):
    product_code: str
    quantity: float = Field(gt=0)
    date: Optional[dt.date] = None


class OrderUpdate(BaseModel):
    quantity: Optional[float] = Field(default=None, gt=0)
    date: Optional[dt.date] = None


class StatusChange(BaseModel):
    status: OrderStatus


class StockDocument(BaseModel):
    item_type: ItemType
    code: str
    quantity: float = Field(gt=0)
    document_ref: str = Field(min_length=1)
    unit_cost: Optional[float] = Field(default=None, ge=0)


def order_payload(order: Order) -> Dict[str, Any]:
    return jsonable_encoder({"kind": order.kind.value, **asdict(order)})


def movement_payload(record: Optional[MovementRecord]) -> Optional[Dict[str, Any]]:
    if record is None:
        return None
    return jsonable_encoder(asdict(record))


def create_app(
    settings: Optional[Settings] = None,
    coordinator: Optional[ProductionInventoryCoordinator] = None,
) -> FastAPI:
    settings = settings or get_settings()
    service = coordinator or build_coordinator(settings)

    app = FastAPI(title="Production ERP", debug=settings.debug)
    app.state.erp_service = service
    app.state.settings = settings

    @app.on_event("shutdown")
    async def shutdown_event() -> None:  # pragma: no cover - framework hook
        service.close()

    @app.exception_handler(ProductionERPError)
    async def erp_error_handler(request: Request, exc: ProductionERPError) -> JSONResponse:
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content=jsonable_encoder(exc.to_dict()))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"code": "INVALID_VALUE", "detail": str(exc)},
        )

    def erp(request: Request) -> ProductionInventoryCoordinator:
        return request.app.state.erp_service

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok", "environment": settings.environment}

    # Inventory items ---------------------------------------------------
    @app.get("/items")
    def list_items(request: Request, item_type: Optional[ItemType] = None):
        return jsonable_encoder(erp(request).list_items(item_type))

    @app.post("/items", status_code=status.HTTP_201_CREATED)
    def create_item(payload: ItemCreate, request: Request):
        item = erp(request).register_item(
            payload.item_type,
            payload.code,
            payload.name,
            payload.unit,
            quantity=payload.quantity,
            unit_cost=payload.unit_cost,
            min_stock=payload.min_stock,
            ingredients=[RecipeIngredient(i.code, i.percentage) for i in payload.ingredients],
            semi_finished=(
                BomComponent(payload.semi_finished.code, payload.semi_finished.quantity)
                if payload.semi_finished is not None
                else None
            ),
            packaging=[BomComponent(c.code, c.quantity) for c in payload.packaging],
        )
        return jsonable_encoder(item)

    @app.get("/items/{item_type}/{code}")
    def get_item(item_type: ItemType, code: str, request: Request):
        return jsonable_encoder(erp(request).get_item(item_type, code))

    @app.delete("/items/{item_type}/{code}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_item(item_type: ItemType, code: str, request: Request) -> Response:
        erp(request).remove_item(item_type, code)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.put("/items/semi_finished/{code}/recipe")
    def update_recipe(code: str, payload: RecipeUpdate, request: Request):
        item = erp(request).set_recipe(
            code, [RecipeIngredient(i.code, i.percentage) for i in payload.ingredients]
        )
        return jsonable_encoder(item)

    @app.put("/items/finished/{code}/bom")
    def update_bom(code: str, payload: BomUpdate, request: Request):
        item = erp(request).set_bill_of_materials(
            code,
            BomComponent(payload.semi_finished.code, payload.semi_finished.quantity),
            [BomComponent(c.code, c.quantity) for c in payload.packaging],
        )
        return jsonable_encoder(item)

    # Orders ------------------------------------------------------------
    @app.get("/orders/{kind}")
    def list_orders(kind: OrderKind, request: Request):
        return [order_payload(order) for order in erp(request).get_orders(kind)]

    @app.post("/orders/{kind}", status_code=status.HTTP_201_CREATED)
    def create_order(kind: OrderKind, payload: OrderCreate, request: Request):
        order = erp(request).create_order(
            kind, payload.product_code, payload.quantity, payload.date
        )
        return order_payload(order)

    @app.get("/orders/{kind}/{order_id}")
    def get_order(kind: OrderKind, order_id: str, request: Request):
        return order_payload(erp(request).get_order(kind, order_id))

    @app.patch("/orders/{kind}/{order_id}")
    def update_order(kind: OrderKind, order_id: str, payload: OrderUpdate, request: Request):
        order = erp(request).update_order(
            kind, order_id, quantity=payload.quantity, date=payload.date
        )
        return order_payload(order)

    @app.post("/orders/{kind}/{order_id}/status")
    def change_status(kind: OrderKind, order_id: str, payload: StatusChange, request: Request):
        return order_payload(erp(request).transition_order(kind, order_id, payload.status))

    @app.delete("/orders/{kind}/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_order(kind: OrderKind, order_id: str, request: Request) -> Response:
        erp(request).delete_order(kind, order_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # Commercial documents ----------------------------------------------
    @app.post("/stock/receipts")
    def receive_stock(payload: StockDocument, request: Request):
        record = erp(request).receive_stock(
            payload.item_type,
            payload.code,
            payload.quantity,
            payload.document_ref,
            payload.unit_cost,
        )
        return {"applied": record is not None, "movement": movement_payload(record)}

    @app.post("/stock/issues")
    def issue_stock(payload: StockDocument, request: Request):
        record = erp(request).issue_stock(
            payload.item_type, payload.code, payload.quantity, payload.document_ref
        )
        return {"applied": record is not None, "movement": movement_payload(record)}

    # Reports -----------------------------------------------------------
    @app.get("/reports/movements")
    def movements_summary(
        request: Request, start: Optional[dt.datetime] = None, end: Optional[dt.datetime] = None
    ):
        summary = erp(request).movements_summary(start=start, end=end)
        return jsonable_encoder(
            {**asdict(summary), "total_movements": summary.total_movements}
        )

    @app.get("/reports/movements/{item_code}")
    def item_movements(
        item_code: str,
        request: Request,
        item_type: Optional[ItemType] = None,
        start: Optional[dt.datetime] = None,
        end: Optional[dt.datetime] = None,
    ):
        report = erp(request).item_movement_report(
            item_code, item_type=item_type, start=start, end=end
        )
        return jsonable_encoder(asdict(report))

    @app.get("/reports/most-active")
    def most_active(request: Request, limit: int = 10, item_type: Optional[ItemType] = None):
        return jsonable_encoder(erp(request).most_active_items(limit, item_type=item_type))

    @app.get("/reports/production")
    def production_stats(request: Request, today: Optional[dt.date] = None):
        return jsonable_encoder(asdict(erp(request).production_stats(today=today)))

    @app.get("/reports/low-stock")
    def low_stock(request: Request, item_type: Optional[ItemType] = None):
        return jsonable_encoder(erp(request).low_stock_items(item_type))

    # Maintenance -------------------------------------------------------
    @app.post("/maintenance/sync-movements")
    def sync_movements(request: Request):
        report = erp(request).sync_movements()
        return {
            "orders_checked": report.orders_checked,
            "created": report.created,
        }

    @app.post("/maintenance/recalculate-costs")
    def recalculate_costs(request: Request):
        return erp(request).recalculate_all_costs()

    @app.post("/maintenance/recalculate-importance")
    def recalculate_importance(request: Request):
        return erp(request).recalculate_importance()

    return app
