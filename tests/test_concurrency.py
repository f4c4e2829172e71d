"""Concurrent transitions competing for the same stock."""

import threading
from datetime import date

import pytest

from production_erp.domain import ItemType, OrderKind, OrderStatus
from production_erp.errors import InsufficientStockError

pytestmark = pytest.mark.integration


def _complete_concurrently(erp, orders):
    barrier = threading.Barrier(len(orders))
    outcomes = []
    lock = threading.Lock()

    def complete(order):
        barrier.wait()
        try:
            erp.transition_order(OrderKind.PRODUCTION, order.id, OrderStatus.COMPLETED)
            outcome = "ok"
        except InsufficientStockError:
            outcome = "short"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=complete, args=(order,)) for order in orders]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return sorted(outcomes)


def test_competing_completions_are_serialised(bakery):
    orders = [bakery.create_order(OrderKind.PRODUCTION, "DOUGH", 100, date(2024, 3, 1)) for _ in range(2)]

    outcomes = _complete_concurrently(bakery, orders)

    assert outcomes == ["ok", "short"]
    assert bakery.get_item(ItemType.RAW, "FLOUR").quantity == pytest.approx(40)
    assert bakery.get_item(ItemType.RAW, "SUGAR").quantity == pytest.approx(10)
    assert bakery.get_item(ItemType.SEMI_FINISHED, "DOUGH").quantity == pytest.approx(100)
    statuses = sorted(bakery.get_order(OrderKind.PRODUCTION, order.id).status.value for order in orders)
    assert statuses == ["completed", "pending"]


def test_concurrent_completions_never_drive_stock_negative(bakery):
    orders = [bakery.create_order(OrderKind.PRODUCTION, "DOUGH", 30, date(2024, 3, 1)) for _ in range(6)]

    outcomes = _complete_concurrently(bakery, orders)

    # each run takes 18 kg flour and 12 kg sugar; 50 kg sugar covers four runs
    assert outcomes.count("ok") == 4
    assert outcomes.count("short") == 2
    for item in bakery.list_items():
        assert item.quantity >= 0
        assert bakery.ledger.net_quantity(item.item_type, item.code) == pytest.approx(item.quantity)
