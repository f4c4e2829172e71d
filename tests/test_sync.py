from datetime import date

import pytest

from production_erp.domain import ItemType, MovementDirection, OrderKind, OrderStatus
from production_erp.sync import expected_movements

pytestmark = pytest.mark.integration

DAY = date(2024, 3, 1)


def _drop_order_movements(store, order_id):
    with store.transaction():
        store.connection.execute("DELETE FROM inventory_movements WHERE order_id = ?", (order_id,))


def test_expected_movements_follow_the_completion_keys(memory_bakery):
    order = memory_bakery.create_order(OrderKind.PACKAGING, "CAKE", 2, DAY)
    order.cycle = 1

    expected = list(expected_movements(order))

    assert [entry[0] for entry in expected] == [
        f"{order.id}:complete:1:0",
        f"{order.id}:complete:1:1",
        f"{order.id}:complete:1:2",
        f"{order.id}:complete:1:output",
    ]
    assert expected[0][1:] == (ItemType.SEMI_FINISHED, "DOUGH", MovementDirection.OUT, 4)
    assert expected[-1][1:] == (ItemType.FINISHED, "CAKE", MovementDirection.IN, 2)


def test_complete_ledger_needs_no_sync(memory_bakery):
    order = memory_bakery.create_order(OrderKind.PRODUCTION, "DOUGH", 10, DAY)
    memory_bakery.transition_order(OrderKind.PRODUCTION, order.id, OrderStatus.COMPLETED)

    report = memory_bakery.sync_movements()

    assert report.orders_checked == 1
    assert report.created == []


def test_sync_recreates_missing_rows_once(sqlite_bakery):
    erp = sqlite_bakery
    order = erp.create_order(OrderKind.PRODUCTION, "DOUGH", 10, DAY)
    erp.transition_order(OrderKind.PRODUCTION, order.id, OrderStatus.COMPLETED)
    erp.create_order(OrderKind.PRODUCTION, "DOUGH", 5, DAY)
    _drop_order_movements(erp.store, order.id)
    flour_before = erp.get_item(ItemType.RAW, "FLOUR").quantity

    report = erp.sync_movements()

    assert report.orders_checked == 1
    assert report.created_count == 3
    records = erp.store.list_movements(order_id=order.id).all()
    assert {record.reason for record in records} == {"ledger_sync"}
    assert erp.get_item(ItemType.RAW, "FLOUR").quantity == flour_before
    assert erp.ledger.net_quantity(ItemType.RAW, "FLOUR") == pytest.approx(flour_before)

    again = erp.sync_movements()
    assert again.created == []
    assert len(erp.store.list_movements(order_id=order.id).all()) == 3


def test_reversed_orders_are_not_synced(sqlite_bakery):
    erp = sqlite_bakery
    order = erp.create_order(OrderKind.PRODUCTION, "DOUGH", 10, DAY)
    erp.transition_order(OrderKind.PRODUCTION, order.id, OrderStatus.COMPLETED)
    erp.transition_order(OrderKind.PRODUCTION, order.id, OrderStatus.PENDING)

    assert erp.sync_movements().orders_checked == 0
