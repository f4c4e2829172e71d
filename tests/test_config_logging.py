import io
import json
import logging
import sys
from datetime import date

import pytest

from production_erp.config import Settings
from production_erp.domain import ItemType, OrderKind, OrderStatus
from production_erp.errors import InsufficientStockError, Shortage
from production_erp.logging_config import LOGGER_NAME, StructuredFormatter, configure_logging
from production_erp.services import build_coordinator
from production_erp.store import InMemoryStore

pytestmark = pytest.mark.unit


# ── Settings ─────────────────────────────────────────────────────

def test_settings_defaults():
    settings = Settings(_env_file=None)

    assert settings.database_path == "production_erp.sqlite3"
    assert settings.uses_memory_store is False
    assert settings.production_code_prefix == "PRD"
    assert settings.packaging_code_prefix == "PKG"


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("PRODUCTION_ERP_DATABASE_PATH", ":memory:")
    monkeypatch.setenv("PRODUCTION_ERP_MOVEMENT_PAGE_SIZE", "25")
    monkeypatch.setenv("PRODUCTION_ERP_LOG_JSON", "true")

    settings = Settings(_env_file=None)

    assert settings.uses_memory_store is True
    assert settings.movement_page_size == 25
    assert settings.log_json is True


def test_build_coordinator_with_demo_catalog():
    settings = Settings(
        _env_file=None,
        database_path=":memory:",
        seed_demo_data=True,
        production_code_prefix="MIX",
    )

    erp = build_coordinator(settings)

    assert isinstance(erp.store, InMemoryStore)
    assert erp.get_item(ItemType.FINISHED, "FP-WHITE-4L").semi_finished.code == "SF-WHITE"
    order = erp.create_order(OrderKind.PRODUCTION, "SF-WHITE", 10, date(2024, 3, 1))
    assert order.code == "MIX-20240301-001"


def test_build_coordinator_on_sqlite(tmp_path):
    settings = Settings(_env_file=None, database_path=str(tmp_path / "erp.sqlite3"))

    erp = build_coordinator(settings)
    try:
        assert erp.store.supports_transactions
        assert erp.list_items() == []
    finally:
        erp.close()


# ── Logging ──────────────────────────────────────────────────────

def _record(msg, exc_info=None, **extra):
    record = logging.LogRecord(LOGGER_NAME, logging.WARNING, __file__, 1, msg, (), exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_structured_formatter_includes_extra_fields():
    record = _record("order refused", order_code="PRD-1", order_kind=OrderKind.PRODUCTION)
    line = StructuredFormatter().format(record)

    payload = json.loads(line)
    assert payload["level"] == "WARNING"
    assert payload["logger"] == LOGGER_NAME
    assert payload["message"] == "order refused"
    assert payload["order_code"] == "PRD-1"
    assert payload["order_kind"] == "production"


def test_structured_formatter_reports_error_codes():
    error = InsufficientStockError([Shortage("raw", "FLOUR", 10, 2)])
    try:
        raise error
    except InsufficientStockError:
        record = _record("failed", exc_info=sys.exc_info())

    payload = json.loads(StructuredFormatter().format(record))

    assert payload["exc_type"] == "InsufficientStockError"
    assert payload["exc_code"] == "INSUFFICIENT_STOCK"
    assert "Traceback" in payload["traceback"]


def test_configure_logging_installs_one_handler():
    stream = io.StringIO()
    logger = configure_logging("debug", json_output=True, stream=stream)
    configure_logging("warning", json_output=True, stream=io.StringIO())

    assert len(logger.handlers) == 1
    assert logger.level == logging.WARNING
    assert logger.propagate is False


def test_transitions_are_logged_with_order_context(memory_bakery):
    stream = io.StringIO()
    configure_logging("INFO", json_output=True, stream=stream)
    order = memory_bakery.create_order(OrderKind.PRODUCTION, "DOUGH", 500, date(2024, 3, 1))

    with pytest.raises(InsufficientStockError):
        memory_bakery.transition_order(OrderKind.PRODUCTION, order.id, OrderStatus.COMPLETED)

    lines = [json.loads(line) for line in stream.getvalue().splitlines()]
    refused = [line for line in lines if line["level"] == "WARNING" and "order_id" in line]
    assert len(refused) == 1
    assert refused[0]["order_id"] == order.id
    assert refused[0]["order_kind"] == "production"
    assert refused[0]["order_code"] == order.code
