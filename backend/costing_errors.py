# backend/costing_errors.py

"""
Error and warning types for the costing engine.

The engine itself never raises for bad catalog data: a unit that cannot be
found, a missing conversion path, a cyclic unit hierarchy or a non-numeric
price all degrade to a safe value (the unchanged price, or 0) and are
reported as a CostingWarning next to the result.

CostingError subclasses are raised only by the service/API layer, for
requests that cannot be answered at all (unknown item, no snapshot loaded).
"""

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel

# Ids of units, items and categories (numeric or string keys)
EntityId = Union[int, str]


class WarningCode(str, Enum):
    """Non-fatal conditions reported by the engine"""
    UNIT_NOT_FOUND = "UNIT_NOT_FOUND"
    CONVERSION_PATH_NOT_FOUND = "CONVERSION_PATH_NOT_FOUND"
    CYCLIC_UNIT_GRAPH = "CYCLIC_UNIT_GRAPH"
    INVALID_CONVERSION_FACTOR = "INVALID_CONVERSION_FACTOR"
    INVALID_NUMERIC_INPUT = "INVALID_NUMERIC_INPUT"


class CostingWarning(BaseModel):
    """Costing warning (non-blocking)"""
    warning_code: WarningCode
    message: str
    field: Optional[str] = None
    unit_id: Optional[EntityId] = None


# ==================== ERROR CLASSES ====================

class CostingError(Exception):
    """Base costing error"""
    def __init__(self, error_code: str, message: str, field: Optional[str] = None):
        self.error_code = error_code
        self.message = message
        self.field = field
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error_code": self.error_code, "message": self.message, "field": self.field}


class ItemNotFoundError(CostingError):
    """Item not present in the loaded catalog snapshot"""
    def __init__(self, item_id: EntityId):
        super().__init__(
            "ITEM_NOT_FOUND",
            f"Item '{item_id}' not found in the catalog snapshot.",
            field="item_id",
        )


class SnapshotNotLoadedError(CostingError):
    """Catalog snapshot was never loaded"""
    def __init__(self):
        super().__init__(
            "SNAPSHOT_NOT_LOADED",
            "Unit and item snapshots have not been loaded yet. Call reload() first.",
        )
