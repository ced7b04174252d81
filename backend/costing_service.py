"""
Costing Service - catalog snapshots and line pricing for procurement documents
"""

import logging
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, ValidationError

from cost_resolver import CostResolution, CostResolver, Item
from costing_errors import ItemNotFoundError, SnapshotNotLoadedError, EntityId
from line_calculator import (
    DocumentTotals,
    FlatAmountTax,
    LineResult,
    RateBasedTax,
    aggregate_document,
    compute_line,
)
from numeric_utils import exact_sum, round_cost, round_money, to_number
from unit_graph import UnitGraph

logger = logging.getLogger(__name__)


class CatalogSnapshot:
    """Units and items captured together; replaced as a whole, never mutated"""

    def __init__(self, units: Iterable[Any], items: Iterable[Any], generation: int):
        self.graph = UnitGraph(units)
        self.resolver = CostResolver(self.graph)
        self.items: Mapping[EntityId, Item] = MappingProxyType(self._build_items(items))
        self.generation = generation
        self.loaded_at = datetime.now(timezone.utc)

    @staticmethod
    def _build_items(items: Iterable[Any]) -> Dict[EntityId, Item]:
        catalog: Dict[EntityId, Item] = {}
        for raw in items:
            try:
                item = raw if isinstance(raw, Item) else Item.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Skipping malformed item row {raw!r}: {e.error_count()} validation error(s)")
                continue
            if item.id is None:
                logger.warning(f"Skipping item row without id: {raw!r}")
                continue
            catalog[item.id] = item
        return catalog


class InventoryCountLine(BaseModel):
    """Priced inventory-count row"""
    item_id: EntityId
    unit_id: Optional[EntityId] = None
    item_name: str
    unit_name: str = ""
    quantity: float
    unit_cost: float  # 4 decimals
    total: float      # 2 decimals
    resolution: CostResolution


class CostingService:
    """Centralized unit costing and document totals"""

    def __init__(self, db=None):
        self.db = db
        self._snapshot: Optional[CatalogSnapshot] = None
        self._generation = 0

    # ==================== SNAPSHOTS ====================

    async def reload(self) -> Dict[str, Any]:
        """Read the units and items collections and swap in a new snapshot"""
        if self.db is None:
            raise RuntimeError("Database connection required for catalog reload")

        units = await self.db.units.find({}, {"_id": 0}).to_list(None)
        items = await self.db.items.find({}, {"_id": 0}).to_list(None)
        return self.load_snapshot(units, items)

    def load_snapshot(self, units: Iterable[Any], items: Iterable[Any]) -> Dict[str, Any]:
        """Swap in a snapshot built from in-memory rows"""
        self._generation += 1
        snapshot = CatalogSnapshot(units, items, self._generation)
        self._snapshot = snapshot
        logger.info(
            f"Catalog snapshot {snapshot.generation} loaded: "
            f"{len(snapshot.graph)} unit(s), {len(snapshot.items)} item(s)"
        )
        return self.snapshot_info()

    @property
    def snapshot(self) -> CatalogSnapshot:
        if self._snapshot is None:
            raise SnapshotNotLoadedError()
        return self._snapshot

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    def snapshot_info(self) -> Dict[str, Any]:
        snapshot = self.snapshot
        return {
            "generation": snapshot.generation,
            "units": len(snapshot.graph),
            "items": len(snapshot.items),
            "loaded_at": snapshot.loaded_at.isoformat(),
        }

    def unit_diagnostics(self) -> Dict[str, Any]:
        """Cycles, dangling base references and bad factors in the loaded units"""
        snapshot = self.snapshot
        graph = snapshot.graph
        return {
            "generation": snapshot.generation,
            "units": len(graph),
            "cycles": graph.find_cycles(),
            "dangling_references": [
                {"unit_id": unit_id, "base_unit_id": base_unit_id}
                for unit_id, base_unit_id in graph.dangling_references()
            ],
            "invalid_factors": graph.invalid_factors(),
        }

    def get_item(self, item_id: EntityId, snapshot: Optional[CatalogSnapshot] = None) -> Item:
        snapshot = snapshot or self.snapshot
        item = snapshot.items.get(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    # ==================== PRICING ====================

    def resolve_cost(self, item_id: EntityId, unit_id: Optional[EntityId]) -> CostResolution:
        snapshot = self.snapshot
        return snapshot.resolver.resolve(self.get_item(item_id, snapshot), unit_id)

    def price_inventory_count_line(
        self,
        item_id: EntityId,
        unit_id: Optional[EntityId],
        quantity: Any,
        language: str = "ar",
    ) -> InventoryCountLine:
        """
        Price one inventory-count row.

        Unit cost is stored with 4 decimals; the row total is computed from
        the unrounded cost and stored with 2.
        """
        snapshot = self.snapshot
        item = self.get_item(item_id, snapshot)
        resolution = snapshot.resolver.resolve(item, unit_id)
        line = compute_line(quantity, resolution.cost)

        unit = snapshot.graph.find_unit(unit_id if unit_id else item.default_unit_id)
        return InventoryCountLine(
            item_id=item_id,
            unit_id=unit.id if unit else unit_id,
            item_name=item.display_name(language),
            unit_name=unit.display_name(language) if unit else "",
            quantity=line.quantity,
            unit_cost=round_cost(resolution.cost),
            total=round_money(line.line_total),
            resolution=resolution,
        )

    def price_purchase_order_line(self, quantity: Any, unit_price: Any, tax: Any = 0) -> LineResult:
        """Purchase-order line: quantity * unit_price + flat tax"""
        return compute_line(quantity, unit_price, tax=FlatAmountTax(amount=to_number(tax)))

    def price_custody_invoice(self, amount_without_tax: Any, discount: Any = 0, tax_rate: Any = 0) -> LineResult:
        """Custody-closure invoice: (amount - discount) plus VAT at tax_rate percent"""
        return compute_line(1, amount_without_tax, discount, RateBasedTax(percent=to_number(tax_rate)))

    def summarize(self, lines: Iterable[LineResult]) -> DocumentTotals:
        return aggregate_document(lines)

    def summarize_inventory_count(self, lines: List[InventoryCountLine]) -> float:
        """Grand total of an inventory count (sum of the stored row totals)"""
        return round_money(exact_sum(line.total for line in lines))
