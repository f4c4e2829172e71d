"""Demonstration script for the paint factory production ERP."""

from __future__ import annotations

from dataclasses import asdict
from pprint import pprint

from .config import Settings
from .domain import BomComponent, ItemType, OrderKind, OrderStatus, RecipeIngredient
from .services import ProductionInventoryCoordinator, build_coordinator


def seed_demo_catalog(coordinator: ProductionInventoryCoordinator) -> None:
    """Register a small paint catalog. Does nothing if items already exist."""
    if coordinator.list_items():
        return

    # Raw materials
    coordinator.register_item(
        ItemType.RAW, "RM-TIO2", "Titanium dioxide", "kg",
        quantity=500, unit_cost=4.2, min_stock=100,
    )
    coordinator.register_item(
        ItemType.RAW, "RM-RESIN", "Acrylic resin", "kg",
        quantity=800, unit_cost=2.5, min_stock=150,
    )
    coordinator.register_item(
        ItemType.RAW, "RM-WATER", "Deionised water", "kg",
        quantity=2000, unit_cost=0.05, min_stock=300,
    )
    coordinator.register_item(
        ItemType.RAW, "RM-ADD", "Dispersing additive", "kg",
        quantity=60, unit_cost=9.0, min_stock=20,
    )

    # Semi-finished product with its recipe (percent of the batch)
    coordinator.register_item(
        ItemType.SEMI_FINISHED, "SF-WHITE", "White emulsion base", "kg",
        min_stock=50,
        ingredients=[
            RecipeIngredient("RM-TIO2", 25),
            RecipeIngredient("RM-RESIN", 35),
            RecipeIngredient("RM-WATER", 38),
            RecipeIngredient("RM-ADD", 2),
        ],
    )

    # Packaging materials
    coordinator.register_item(
        ItemType.PACKAGING, "PK-CAN4", "4 l tin can", "pcs",
        quantity=400, unit_cost=0.9, min_stock=100,
    )
    coordinator.register_item(
        ItemType.PACKAGING, "PK-LID4", "4 l can lid", "pcs",
        quantity=400, unit_cost=0.2, min_stock=100,
    )
    coordinator.register_item(
        ItemType.PACKAGING, "PK-LABEL", "Printed label", "pcs",
        quantity=1000, unit_cost=0.05, min_stock=200,
    )

    # Finished product: one can holds 5 kg of base
    coordinator.register_item(
        ItemType.FINISHED, "FP-WHITE-4L", "Interior white 4 l", "pcs",
        min_stock=20,
        semi_finished=BomComponent("SF-WHITE", 5),
        packaging=[
            BomComponent("PK-CAN4", 1),
            BomComponent("PK-LID4", 1),
            BomComponent("PK-LABEL", 1),
        ],
    )
    coordinator.recalculate_all_costs()
    coordinator.recalculate_importance()


def main() -> None:
    erp = build_coordinator(Settings(database_path=":memory:", log_level="INFO"))
    seed_demo_catalog(erp)

    # Mix a 400 kg batch of the white base
    production = erp.create_order(OrderKind.PRODUCTION, "SF-WHITE", 400)
    erp.transition_order(OrderKind.PRODUCTION, production.id, OrderStatus.IN_PROGRESS)
    production = erp.transition_order(OrderKind.PRODUCTION, production.id, OrderStatus.COMPLETED)
    base = erp.get_item(ItemType.SEMI_FINISHED, "SF-WHITE")
    print(f"\nProduction {production.code}: {production.quantity:g} kg, cost {production.total_cost:.2f}")
    print(f"White base on hand: {base.quantity:g} kg at {base.unit_cost:.4f} per kg")

    # Fill 60 cans from it
    packaging = erp.create_order(OrderKind.PACKAGING, "FP-WHITE-4L", 60)
    packaging = erp.transition_order(OrderKind.PACKAGING, packaging.id, OrderStatus.COMPLETED)
    cans = erp.get_item(ItemType.FINISHED, "FP-WHITE-4L")
    print(f"Packaging {packaging.code}: {cans.quantity:g} cans at {cans.unit_cost:.4f} per can")

    # Ship a few to a customer
    erp.issue_stock(ItemType.FINISHED, "FP-WHITE-4L", 12, "INV-1001")

    print("\nLow stock")
    for item in erp.low_stock_items():
        print(f" - {item.item_type.value} {item.code}: {item.quantity:g} < {item.min_stock:g}")

    print("\nMost active items")
    for activity in erp.most_active_items(5):
        print(f" - {activity.code}: {activity.movement_count} movement(s)")

    print("\nProduction statistics")
    pprint(asdict(erp.production_stats()))
    erp.close()


if __name__ == "__main__":  # pragma: no cover - manual execution
    main()
