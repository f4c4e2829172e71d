"""Bottom-up cost propagation from raw materials to finished products."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List

from .domain import InventoryItem, ItemType, MaterialRequirement
from .store import InventoryStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CostResult:
    """Cost of one production run."""

    total_cost: float
    unit_cost: float
    used_stored_cost: bool = False


class CostCalculator:
    """Computes batch and unit costs from the current input unit costs.

    Unit costs are written with "last producer wins" semantics: completing an
    order overwrites the output item's unit cost with the batch unit cost.
    """

    def __init__(self, store: InventoryStore) -> None:
        self.store = store

    def _unit_cost(self, item_type: ItemType, code: str) -> float:
        item = self.store.find_item(item_type, code)
        return item.unit_cost if item is not None else 0.0

    def calculate_batch_cost(self, requirements: Iterable[MaterialRequirement]) -> float:
        return sum(
            self._unit_cost(line.item_type, line.code) * line.required_quantity
            for line in requirements
        )

    def cost_of_run(
        self,
        output: InventoryItem,
        requirements: Iterable[MaterialRequirement],
        quantity: float,
    ) -> CostResult:
        """Batch cost and per-unit cost of producing ``quantity`` of ``output``.

        A zero computed cost falls back to the output's stored positive unit
        cost so a missing input price does not wipe out a known cost.
        """
        if quantity <= 0:
            raise ValueError("Produced quantity must be positive")
        total = self.calculate_batch_cost(requirements)
        if total <= 0 and output.unit_cost > 0:
            return CostResult(output.unit_cost * quantity, output.unit_cost, True)
        return CostResult(total, total / quantity)

    # ------------------------------------------------------------------
    # Standard cost rollups
    # ------------------------------------------------------------------
    def _store_rollup(self, item: InventoryItem, computed: float) -> float:
        if computed <= 0 and item.unit_cost > 0:
            return item.unit_cost
        if computed != item.unit_cost:
            self.store.set_unit_cost(item.item_type, item.code, computed)
            logger.info(
                "Unit cost of %s %s updated from %.4f to %.4f",
                item.item_type.value,
                item.code,
                item.unit_cost,
                computed,
            )
        return computed

    def recalculate_semi_finished_cost(self, code: str) -> float:
        item = self.store.get_item(ItemType.SEMI_FINISHED, code)
        computed = sum(
            self._unit_cost(ItemType.RAW, ingredient.code) * ingredient.percentage / 100.0
            for ingredient in item.ingredients
        )
        return self._store_rollup(item, computed)

    def recalculate_finished_cost(self, code: str) -> float:
        item = self.store.get_item(ItemType.FINISHED, code)
        computed = 0.0
        if item.semi_finished is not None:
            computed += (
                self._unit_cost(ItemType.SEMI_FINISHED, item.semi_finished.code)
                * item.semi_finished.quantity
            )
        for component in item.packaging:
            computed += self._unit_cost(ItemType.PACKAGING, component.code) * component.quantity
        return self._store_rollup(item, computed)

    def recalculate_costs_for_raw_material(self, raw_code: str) -> Dict[str, float]:
        """Refresh every semi-finished product using ``raw_code`` and the finished products above them."""
        updated: Dict[str, float] = {}
        semi_codes: List[str] = []
        with self.store.transaction():
            for item in self.store.list_items(ItemType.SEMI_FINISHED):
                if any(ingredient.code == raw_code for ingredient in item.ingredients):
                    updated[f"{ItemType.SEMI_FINISHED.value}:{item.code}"] = (
                        self.recalculate_semi_finished_cost(item.code)
                    )
                    semi_codes.append(item.code)
            for item in self.store.list_items(ItemType.FINISHED):
                if item.semi_finished is not None and item.semi_finished.code in semi_codes:
                    updated[f"{ItemType.FINISHED.value}:{item.code}"] = (
                        self.recalculate_finished_cost(item.code)
                    )
        return updated

    def recalculate_all_costs(self) -> Dict[str, float]:
        updated: Dict[str, float] = {}
        with self.store.transaction():
            for item in self.store.list_items(ItemType.SEMI_FINISHED):
                updated[f"{ItemType.SEMI_FINISHED.value}:{item.code}"] = (
                    self.recalculate_semi_finished_cost(item.code)
                )
            for item in self.store.list_items(ItemType.FINISHED):
                updated[f"{ItemType.FINISHED.value}:{item.code}"] = (
                    self.recalculate_finished_cost(item.code)
                )
        return updated


__all__ = ["CostCalculator", "CostResult"]
