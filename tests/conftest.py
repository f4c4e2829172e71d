"""Pytest configuration and fixtures for the production ERP tests.

Provides stores (in-memory and SQLite), a wired coordinator and a small
bakery catalog used across the suites.
"""

from typing import Generator

import pytest

from production_erp.domain import BomComponent, ItemType, RecipeIngredient
from production_erp.logging_config import reset_logging
from production_erp.services import ProductionInventoryCoordinator
from production_erp.storage import SQLiteStore
from production_erp.store import InMemoryStore, InventoryStore


# ── Stores ───────────────────────────────────────────────────────

@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def sqlite_store(tmp_path) -> Generator[SQLiteStore, None, None]:
    store = SQLiteStore(str(tmp_path / "erp.sqlite3"), page_size=3)
    yield store
    store.close()


@pytest.fixture(params=["memory", "sqlite"])
def store(request) -> InventoryStore:
    """Run a test once per store backend."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def coordinator(store: InventoryStore) -> ProductionInventoryCoordinator:
    return ProductionInventoryCoordinator(store)


# ── Catalog ──────────────────────────────────────────────────────

def seed_bakery(erp: ProductionInventoryCoordinator) -> ProductionInventoryCoordinator:
    erp.register_item(ItemType.RAW, "FLOUR", "Wheat flour", "kg", quantity=100, unit_cost=2.0, min_stock=10)
    erp.register_item(ItemType.RAW, "SUGAR", "Sugar", "kg", quantity=50, unit_cost=3.0, min_stock=10)
    erp.register_item(
        ItemType.SEMI_FINISHED,
        "DOUGH",
        "Sweet dough",
        "kg",
        min_stock=5,
        ingredients=[RecipeIngredient("FLOUR", 60), RecipeIngredient("SUGAR", 40)],
    )
    erp.register_item(ItemType.PACKAGING, "BOX", "Cake box", "pcs", quantity=20, unit_cost=0.5, min_stock=5)
    erp.register_item(ItemType.PACKAGING, "LABEL", "Label", "pcs", quantity=100, unit_cost=0.1)
    erp.register_item(
        ItemType.FINISHED,
        "CAKE",
        "Boxed cake",
        "pcs",
        min_stock=2,
        semi_finished=BomComponent("DOUGH", 2),
        packaging=[BomComponent("BOX", 1), BomComponent("LABEL", 2)],
    )
    return erp


@pytest.fixture
def bakery(coordinator: ProductionInventoryCoordinator) -> ProductionInventoryCoordinator:
    """Coordinator seeded with raw, semi-finished, packaging and finished items."""
    return seed_bakery(coordinator)


@pytest.fixture
def memory_bakery(memory_store: InMemoryStore) -> ProductionInventoryCoordinator:
    return seed_bakery(ProductionInventoryCoordinator(memory_store))


@pytest.fixture
def sqlite_bakery(sqlite_store: SQLiteStore) -> ProductionInventoryCoordinator:
    return seed_bakery(ProductionInventoryCoordinator(sqlite_store))


@pytest.fixture
def non_atomic_bakery() -> ProductionInventoryCoordinator:
    """Bakery on a store that keeps writes made before a failure."""
    return seed_bakery(ProductionInventoryCoordinator(InMemoryStore(atomic=False)))


@pytest.fixture(autouse=True)
def _reset_logging() -> Generator[None, None, None]:
    yield
    reset_logging()


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
