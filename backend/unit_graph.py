# backend/unit_graph.py

"""
Unit Graph - in-memory snapshot of measurement units

Each unit may point at a base unit (baseUnitId) with a conversion factor.
The graph answers two kinds of questions:
- lookups: what is unit X, what is its base, what is its factor
- upward traversal: follow baseUnitId links from one unit toward another,
  multiplying conversion factors along the way

Well-formed data is a forest. Catalog data is edited by hand, so the graph
also has to survive cycles (A -> B -> A), references to deleted units and
zero/garbage factors without looping or raising.

SNAPSHOTS:
- load() builds a new read-only mapping and swaps it in with a single
  assignment; a traversal captures the mapping once and never sees a
  half-loaded catalog
- with_snapshot() returns a new graph and leaves this one untouched
"""

import logging
import threading
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from costing_errors import EntityId
from numeric_utils import parse_number

logger = logging.getLogger(__name__)


# ==================== DATA MODELS ====================

class Unit(BaseModel):
    """
    Unit of measure as stored in the catalog.

    conversion_factor is None when the stored factor is not a number; the
    traversal treats it (and any factor <= 0) as 1 and reports the unit.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: EntityId
    name_ar: Optional[str] = Field(default=None, alias="nameAr")
    name_en: Optional[str] = Field(default=None, alias="nameEn")
    name: Optional[str] = None  # single-language rows from before the bilingual migration
    base_unit_id: Optional[EntityId] = Field(default=None, alias="baseUnitId")
    conversion_factor: Optional[float] = Field(default=1.0, alias="conversionFactor")

    @field_validator("base_unit_id", mode="before")
    @classmethod
    def blank_base_is_none(cls, value: Any) -> Any:
        # 0 / "" / null all mean "no base unit"
        if value is None or value == 0 or value == "":
            return None
        return value

    @field_validator("conversion_factor", mode="before")
    @classmethod
    def coerce_factor(cls, value: Any) -> Optional[float]:
        if value is None:
            return 1.0
        return parse_number(value)

    def display_name(self, language: str = "ar") -> str:
        if language == "ar":
            return self.name_ar or self.name_en or self.name or str(self.id)
        return self.name_en or self.name_ar or self.name or str(self.id)

    @property
    def has_valid_factor(self) -> bool:
        return self.conversion_factor is not None and self.conversion_factor > 0


class TraversalResult(BaseModel):
    """
    Outcome of an upward walk.

    path lists the unit ids visited before the target, in walk order. When
    the walk fails it still holds what was visited, which is the cycle when
    cycle_detected is set.
    """
    found: bool
    factor: float = 1.0
    path: List[EntityId] = []
    cycle_detected: bool = False
    missing_unit_id: Optional[EntityId] = None
    dead_end_unit_id: Optional[EntityId] = None
    invalid_factor_unit_ids: List[EntityId] = []


# ==================== UNIT GRAPH ====================

class UnitGraph:
    """Read-only view over a unit snapshot with cycle-safe traversal"""

    def __init__(self, units: Optional[Iterable[Union[Unit, Dict[str, Any]]]] = None):
        self._lock = threading.Lock()
        self._units: Mapping[EntityId, Unit] = MappingProxyType({})
        self._generation = 0
        if units is not None:
            self.load(units)

    @staticmethod
    def _build(units: Iterable[Union[Unit, Dict[str, Any]]]) -> Dict[EntityId, Unit]:
        snapshot: Dict[EntityId, Unit] = {}
        for raw in units:
            if isinstance(raw, Unit):
                unit = raw
            else:
                try:
                    unit = Unit.model_validate(raw)
                except ValidationError as e:
                    # Rows without a usable id simply do not resolve
                    logger.warning(f"Skipping malformed unit row {raw!r}: {e.error_count()} validation error(s)")
                    continue
            snapshot[unit.id] = unit
        return snapshot

    def load(self, units: Iterable[Union[Unit, Dict[str, Any]]]) -> int:
        """
        Replace the current snapshot.

        Duplicate ids: the last row wins. Returns the new generation number.
        """
        snapshot = MappingProxyType(self._build(units))
        with self._lock:
            self._units = snapshot
            self._generation += 1
            generation = self._generation
        logger.info(f"Loaded unit snapshot generation {generation} with {len(snapshot)} unit(s)")
        return generation

    def with_snapshot(self, units: Iterable[Union[Unit, Dict[str, Any]]]) -> "UnitGraph":
        """Return a new graph over `units`; this graph is left untouched"""
        return UnitGraph(units)

    def snapshot(self) -> "UnitGraph":
        """
        Pin the current snapshot.

        The returned graph shares the read-only mapping and is not affected
        by later load() calls on this graph.
        """
        pinned = UnitGraph()
        pinned._units = self._units
        pinned._generation = self._generation
        return pinned

    @property
    def generation(self) -> int:
        return self._generation

    def __len__(self) -> int:
        return len(self._units)

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._units

    def units(self) -> List[Unit]:
        return list(self._units.values())

    def find_unit(self, unit_id: Optional[EntityId]) -> Optional[Unit]:
        if unit_id is None:
            return None
        return self._units.get(unit_id)

    def traverse_up(self, from_unit_id: EntityId, to_unit_id: EntityId) -> TraversalResult:
        """
        Follow baseUnitId links from `from_unit_id` until `to_unit_id`.

        The cumulative factor is the product of the conversion factors of
        every unit stepped from. Stops (not found) on a unit without a base,
        on a base id missing from the snapshot, or when a unit is revisited.
        Each unit is visited at most once, so the walk is O(number of units).
        """
        units = self._units  # one snapshot for the whole walk

        if from_unit_id == to_unit_id:
            return TraversalResult(found=True)

        current = units.get(from_unit_id)
        if current is None:
            return TraversalResult(found=False, missing_unit_id=from_unit_id)

        factor = 1.0
        path: List[EntityId] = []
        visited = set()
        invalid_factor_ids: List[EntityId] = []

        while current.id != to_unit_id:
            if current.id in visited:
                logger.warning(f"Circular unit reference detected while walking {from_unit_id} -> {to_unit_id}: {path}")
                return TraversalResult(
                    found=False,
                    factor=factor,
                    path=path,
                    cycle_detected=True,
                    invalid_factor_unit_ids=invalid_factor_ids,
                )
            visited.add(current.id)
            path.append(current.id)

            if current.base_unit_id is None:
                return TraversalResult(
                    found=False,
                    factor=factor,
                    path=path,
                    dead_end_unit_id=current.id,
                    invalid_factor_unit_ids=invalid_factor_ids,
                )

            step = current.conversion_factor
            if not current.has_valid_factor:
                invalid_factor_ids.append(current.id)
                step = 1.0
            factor *= step

            next_unit = units.get(current.base_unit_id)
            if next_unit is None:
                return TraversalResult(
                    found=False,
                    factor=factor,
                    path=path,
                    missing_unit_id=current.base_unit_id,
                    invalid_factor_unit_ids=invalid_factor_ids,
                )
            current = next_unit

        return TraversalResult(
            found=True,
            factor=factor,
            path=path,
            invalid_factor_unit_ids=invalid_factor_ids,
        )

    # ==================== DIAGNOSTICS ====================

    def find_cycles(self) -> List[List[EntityId]]:
        """
        Return every cycle in the baseUnitId links, each listed once.

        Every unit has at most one outgoing link, so a single colouring
        pass over all units finds them all.
        """
        units = self._units
        done = set()
        cycles: List[List[EntityId]] = []

        for start_id in units:
            if start_id in done:
                continue
            walk: List[EntityId] = []
            position: Dict[EntityId, int] = {}
            current_id: Optional[EntityId] = start_id
            while current_id is not None and current_id in units and current_id not in done:
                if current_id in position:
                    cycles.append(walk[position[current_id]:])
                    break
                position[current_id] = len(walk)
                walk.append(current_id)
                current_id = units[current_id].base_unit_id
            done.update(walk)

        return cycles

    def dangling_references(self) -> List[Tuple[EntityId, EntityId]]:
        """(unit_id, base_unit_id) pairs whose base unit is not in the snapshot"""
        units = self._units
        return [
            (unit.id, unit.base_unit_id)
            for unit in units.values()
            if unit.base_unit_id is not None and unit.base_unit_id not in units
        ]

    def invalid_factors(self) -> List[EntityId]:
        """Units with a base unit whose conversion factor is missing, non-numeric or <= 0"""
        return [
            unit.id
            for unit in self._units.values()
            if unit.base_unit_id is not None and not unit.has_valid_factor
        ]
