# backend/cost_resolver.py

"""
Cost Resolver - item cost per arbitrary unit

An item's catalog price is always denominated in its default (primary)
unit. The cost of one unit of any other unit is derived, never stored:

    cost = price / F

where F is the cumulative conversion factor of a baseUnitId chain linking
the two units.

DIRECTION:
The stored conversionFactor is read two ways in deployed catalogs
("1 Carton = 10 Kg" on some rows, "12 Piece = 1 Carton" on others), so
both walks are attempted, in this order:
1) up from the default unit toward the target unit
2) up from the target unit toward the default unit
The first walk that reaches the other unit wins. When neither does, the
price is returned unchanged with a CONVERSION_PATH_NOT_FOUND warning.

Nothing here raises on bad catalog data.
"""

import logging
import math
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from costing_errors import CostingWarning, EntityId, WarningCode
from numeric_utils import parse_number
from unit_graph import UnitGraph

logger = logging.getLogger(__name__)


# ==================== ENUMS ====================

class ResolutionMethod(str, Enum):
    """How the returned cost was obtained"""
    IDENTITY = "IDENTITY"      # target is the default unit (or no target)
    CONVERTED = "CONVERTED"    # a conversion path was found
    FALLBACK = "FALLBACK"      # no path; price returned unchanged


class ConversionDirection(str, Enum):
    """Which upward walk found the path"""
    FROM_DEFAULT = "FROM_DEFAULT"
    FROM_TARGET = "FROM_TARGET"


# ==================== DATA MODELS ====================

class Item(BaseModel):
    """Catalog item; price is in default_unit_id terms"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[EntityId] = None
    name_ar: Optional[str] = Field(default=None, alias="nameAr")
    name_en: Optional[str] = Field(default=None, alias="nameEn")
    name: Optional[str] = None
    default_unit_id: Optional[EntityId] = Field(default=None, alias="defaultUnitId")
    price: Any = None  # kept raw; coerced when resolving
    category_id: Optional[EntityId] = Field(default=None, alias="categoryId")

    def display_name(self, language: str = "ar") -> str:
        if language == "ar":
            return self.name_ar or self.name_en or self.name or str(self.id)
        return self.name_en or self.name_ar or self.name or str(self.id)


class CostResolution(BaseModel):
    """Resolver output contract"""
    cost: float
    price: float
    target_unit_id: Optional[EntityId] = None
    default_unit_id: Optional[EntityId] = None
    method: ResolutionMethod
    direction: Optional[ConversionDirection] = None
    factor: float = 1.0
    path: List[EntityId] = []
    warnings: List[CostingWarning] = []


def _is_blank(unit_id: Optional[EntityId]) -> bool:
    return unit_id is None or unit_id == 0 or unit_id == ""


# ==================== COST RESOLVER ====================

class CostResolver:
    """Derives per-unit cost from an item's default-unit price"""

    def __init__(self, graph: UnitGraph):
        self.graph = graph

    def with_graph(self, graph: UnitGraph) -> "CostResolver":
        return CostResolver(graph)

    def resolve_unit_cost(self, item: Union[Item, Dict[str, Any]], target_unit_id: Optional[EntityId]) -> float:
        """Cost of one `target_unit_id` of `item`; see resolve() for the details"""
        return self.resolve(item, target_unit_id).cost

    def resolve(self, item: Union[Item, Dict[str, Any]], target_unit_id: Optional[EntityId]) -> CostResolution:
        """
        Resolve the cost of one target unit of an item.

        Args:
            item: Item (or item dict with camelCase/snake_case keys)
            target_unit_id: Requested unit; None/0 means the default unit

        Returns:
            CostResolution with the cost and any non-fatal warnings
        """
        if not isinstance(item, Item):
            item = Item.model_validate(item)

        warnings: List[CostingWarning] = []

        price = parse_number(item.price)
        if price is None:
            if item.price is not None:
                warnings.append(CostingWarning(
                    warning_code=WarningCode.INVALID_NUMERIC_INPUT,
                    message=f"Price {item.price!r} of item '{item.id}' is not a number; using 0.",
                    field="price",
                ))
                logger.warning(f"Non-numeric price {item.price!r} for item '{item.id}', using 0")
            price = 0.0

        default_unit_id = item.default_unit_id if not _is_blank(item.default_unit_id) else 0

        def fallback() -> CostResolution:
            return CostResolution(
                cost=price,
                price=price,
                target_unit_id=target_unit_id,
                default_unit_id=default_unit_id,
                method=ResolutionMethod.FALLBACK,
                warnings=warnings,
            )

        if _is_blank(target_unit_id) or target_unit_id == default_unit_id:
            return CostResolution(
                cost=price,
                price=price,
                target_unit_id=target_unit_id,
                default_unit_id=default_unit_id,
                method=ResolutionMethod.IDENTITY,
                warnings=warnings,
            )

        # Pin one snapshot for both walks
        graph = self.graph.snapshot()

        missing = [
            (unit_id, field)
            for unit_id, field in ((target_unit_id, "target_unit_id"), (default_unit_id, "default_unit_id"))
            if graph.find_unit(unit_id) is None
        ]
        if missing:
            for unit_id, field in missing:
                warnings.append(CostingWarning(
                    warning_code=WarningCode.UNIT_NOT_FOUND,
                    message=f"Unit '{unit_id}' not found in unit snapshot; using the default-unit price.",
                    field=field,
                    unit_id=unit_id,
                ))
            logger.warning(f"Unit(s) {[unit_id for unit_id, _ in missing]} not found while costing item '{item.id}'")
            return fallback()

        flagged_factor_ids = set()
        attempts = (
            (ConversionDirection.FROM_DEFAULT, default_unit_id, target_unit_id),
            (ConversionDirection.FROM_TARGET, target_unit_id, default_unit_id),
        )

        for direction, start_id, end_id in attempts:
            traversal = graph.traverse_up(start_id, end_id)

            for unit_id in traversal.invalid_factor_unit_ids:
                if unit_id in flagged_factor_ids:
                    continue
                flagged_factor_ids.add(unit_id)
                warnings.append(CostingWarning(
                    warning_code=WarningCode.INVALID_CONVERSION_FACTOR,
                    message=f"Unit '{unit_id}' has a missing or non-positive conversion factor; treated as 1.",
                    field="conversion_factor",
                    unit_id=unit_id,
                ))
                logger.warning(f"Invalid conversion factor on unit {unit_id}, treated as 1")

            if traversal.cycle_detected:
                warnings.append(CostingWarning(
                    warning_code=WarningCode.CYCLIC_UNIT_GRAPH,
                    message=f"Circular unit reference while walking {start_id} -> {end_id}: {traversal.path}",
                    field="base_unit_id",
                    unit_id=start_id,
                ))

            if traversal.found:
                factor = traversal.factor
                if not math.isfinite(factor) or factor <= 0:
                    # Chained factors underflowed to 0 or overflowed to inf
                    warnings.append(CostingWarning(
                        warning_code=WarningCode.INVALID_CONVERSION_FACTOR,
                        message=f"Cumulative conversion factor {factor} between {start_id} and {end_id} is not usable.",
                        field="conversion_factor",
                        unit_id=start_id,
                    ))
                    logger.warning(f"Unusable cumulative factor {factor} walking {start_id} -> {end_id} for item '{item.id}'")
                    continue

                cost = price / factor
                logger.debug(f"Cost of item '{item.id}' in unit {target_unit_id} ({direction.value}): {price} / {factor} = {cost}")
                return CostResolution(
                    cost=cost,
                    price=price,
                    target_unit_id=target_unit_id,
                    default_unit_id=default_unit_id,
                    method=ResolutionMethod.CONVERTED,
                    direction=direction,
                    factor=factor,
                    path=traversal.path,
                    warnings=warnings,
                )

        warnings.append(CostingWarning(
            warning_code=WarningCode.CONVERSION_PATH_NOT_FOUND,
            message=f"No conversion path between unit {target_unit_id} and default unit {default_unit_id}; using the default-unit price.",
            field="target_unit_id",
            unit_id=target_unit_id,
        ))
        logger.warning(f"No conversion path from unit {target_unit_id} to primary unit {default_unit_id} for item '{item.id}'")
        return fallback()
