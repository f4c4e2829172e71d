"""HTTP API tests."""

import pytest
from fastapi.testclient import TestClient

from production_erp.config import Settings
from production_erp.web.app import create_app

pytestmark = pytest.mark.api


@pytest.fixture
def client(memory_bakery):
    app = create_app(Settings(database_path=":memory:"), coordinator=memory_bakery)
    return TestClient(app)


def _create_production(client, quantity=50):
    response = client.post(
        "/orders/production", json={"product_code": "DOUGH", "quantity": quantity, "date": "2024-03-01"}
    )
    assert response.status_code == 201
    return response.json()


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_list_and_get_items(client):
    items = client.get("/items", params={"item_type": "raw"}).json()
    assert [item["code"] for item in items] == ["FLOUR", "SUGAR"]

    flour = client.get("/items/raw/FLOUR").json()
    assert flour["quantity"] == 100
    assert flour["item_type"] == "raw"


def test_missing_item_is_404(client):
    response = client.get("/items/raw/NOPE")
    assert response.status_code == 404
    body = response.json()
    assert body["code"] == "NOT_FOUND"
    assert body["key"] == "NOPE"


def test_create_item_and_recipe(client):
    response = client.post(
        "/items",
        json={"item_type": "raw", "code": "SALT", "name": "Salt", "unit": "kg", "quantity": 3},
    )
    assert response.status_code == 201
    response = client.put(
        "/items/semi_finished/DOUGH/recipe",
        json={"ingredients": [{"code": "FLOUR", "percentage": 95}, {"code": "SALT", "percentage": 5}]},
    )
    assert response.status_code == 200
    assert [line["code"] for line in response.json()["ingredients"]] == ["FLOUR", "SALT"]


def test_order_lifecycle_over_http(client):
    order = _create_production(client)
    assert order["kind"] == "production"
    assert order["code"] == "PRD-20240301-001"
    assert order["status"] == "pending"

    response = client.post(f"/orders/production/{order['id']}/status", json={"status": "completed"})
    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert client.get("/items/semi_finished/DOUGH").json()["quantity"] == 50

    response = client.post(f"/orders/production/{order['id']}/status", json={"status": "inProgress"})
    assert response.json()["status"] == "inProgress"
    assert client.get("/items/raw/FLOUR").json()["quantity"] == 100


def test_insufficient_stock_is_409_with_shortages(client):
    order = _create_production(client, quantity=500)

    response = client.post(f"/orders/production/{order['id']}/status", json={"status": "completed"})

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "INSUFFICIENT_STOCK"
    assert {shortage["code"] for shortage in body["shortages"]} == {"FLOUR", "SUGAR"}


def test_invalid_transition_is_409(client):
    order = _create_production(client)
    client.post(f"/orders/production/{order['id']}/status", json={"status": "cancelled"})

    response = client.post(f"/orders/production/{order['id']}/status", json={"status": "completed"})

    assert response.status_code == 409
    assert response.json()["code"] == "INVALID_TRANSITION"


def test_delete_rules(client):
    order = _create_production(client)
    client.post(f"/orders/production/{order['id']}/status", json={"status": "inProgress"})
    response = client.delete(f"/orders/production/{order['id']}")
    assert response.status_code == 409
    assert response.json()["code"] == "NOT_DELETABLE"

    pending = _create_production(client)
    assert client.delete(f"/orders/production/{pending['id']}").status_code == 204
    assert client.get(f"/orders/production/{pending['id']}").status_code == 404


def test_insufficient_spec_is_422(client):
    client.post("/items", json={"item_type": "semi_finished", "code": "EMPTY", "name": "Empty", "unit": "kg"})
    response = client.post("/orders/production", json={"product_code": "EMPTY", "quantity": 1})
    assert response.status_code == 422
    assert response.json()["code"] == "INSUFFICIENT_SPEC"


def test_invalid_payload_is_rejected(client):
    response = client.post("/orders/production", json={"product_code": "DOUGH", "quantity": 0})
    assert response.status_code == 422


def test_update_order_quantity(client):
    order = _create_production(client)
    response = client.patch(f"/orders/production/{order['id']}", json={"quantity": 10})
    assert response.status_code == 200
    assert response.json()["quantity"] == 10


def test_stock_documents_are_idempotent(client):
    payload = {"item_type": "packaging", "code": "BOX", "quantity": 5, "document_ref": "INV-9"}
    first = client.post("/stock/issues", json=payload).json()
    second = client.post("/stock/issues", json=payload).json()
    assert first["applied"] is True
    assert first["movement"]["direction"] == "out"
    assert second == {"applied": False, "movement": None}
    assert client.get("/items/packaging/BOX").json()["quantity"] == 15


def test_reports(client):
    order = _create_production(client)
    client.post(f"/orders/production/{order['id']}/status", json={"status": "completed"})

    summary = client.get("/reports/movements").json()
    assert summary["total_movements"] == 7
    report = client.get("/reports/movements/FLOUR", params={"item_type": "raw"}).json()
    assert report["totals"]["quantity_out"] == pytest.approx(30)
    active = client.get("/reports/most-active", params={"limit": 1}).json()
    assert active[0]["code"] == "FLOUR"
    stats = client.get("/reports/production", params={"today": "2024-03-02"}).json()
    assert stats["production"]["by_status"]["completed"] == 1
    low = client.get("/reports/low-stock").json()
    assert [item["code"] for item in low] == ["CAKE"]


def test_maintenance_endpoints(client):
    assert client.post("/maintenance/sync-movements").json() == {"orders_checked": 0, "created": []}
    costs = client.post("/maintenance/recalculate-costs").json()
    assert costs["semi_finished:DOUGH"] == pytest.approx(2.4)
    importance = client.post("/maintenance/recalculate-importance").json()
    assert importance["raw:FLOUR"] == 6


def test_movement_report_accepts_naive_bounds(client):
    response = client.get("/reports/movements", params={"start": "2000-01-01T00:00:00"})
    assert response.status_code == 200
    assert response.json()["total_movements"] == 4

    response = client.get("/reports/movements", params={"end": "2000-01-01T00:00:00+05:00"})
    assert response.json()["total_movements"] == 0


def test_duplicate_item_is_409(client):
    payload = {"item_type": "raw", "code": "FLOUR", "name": "Flour again", "unit": "kg"}
    response = client.post("/items", json=payload)
    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "DUPLICATE_ITEM"
    assert body["key"] == "FLOUR"
