# backend/numeric_utils.py

"""
Numeric helpers shared by the costing engine.

Form inputs and catalog rows arrive as strings, numbers, None or garbage.
The engine is permissive: anything that does not parse becomes 0 (or the
supplied default) instead of raising, the same way the admin forms parse
their inputs.
"""

import math
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional

# Unit cost is stored with 4 decimals, money amounts with 2
COST_DECIMALS = 4
MONEY_DECIMALS = 2

# Arabic-Indic (٠-٩) and Extended Arabic-Indic (۰-۹) digits
_ARABIC_DIGITS = str.maketrans(
    "٠١٢٣٤٥٦٧٨٩۰۱۲۳۴۵۶۷۸۹",
    "01234567890123456789",
)


def normalize_digits(value: str) -> str:
    """Convert Arabic-Indic numerals to ASCII digits and the Arabic decimal separator to '.'"""
    return value.translate(_ARABIC_DIGITS).replace("٫", ".").replace("٬", "")


def parse_number(value: Any) -> Optional[float]:
    """
    Parse a number, returning None when it is missing or not numeric.

    Accepts ints, floats, Decimals and numeric strings (with ASCII or
    Arabic-Indic digits). NaN and infinity are rejected. Booleans are not
    numbers here.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        text = normalize_digits(value).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None

    if math.isnan(number) or math.isinf(number):
        return None
    return number


def to_number(value: Any, default: float = 0.0) -> float:
    """Parse a number, falling back to `default` (0) for missing or invalid input"""
    number = parse_number(value)
    return default if number is None else number


def round_half_up(value: float, decimal_places: int) -> float:
    """Round using Decimal ROUND_HALF_UP (2.345 -> 2.35, not banker's rounding)"""
    try:
        decimal_value = Decimal(str(value))
        if not decimal_value.is_finite():
            return 0.0
        rounded = decimal_value.quantize(Decimal(10) ** -decimal_places, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return 0.0
    return float(rounded)


def round_cost(value: float) -> float:
    return round_half_up(value, COST_DECIMALS)


def round_money(value: float) -> float:
    return round_half_up(value, MONEY_DECIMALS)


def exact_sum(values) -> float:
    """
    Sum floats through Decimal(str(x)).

    Each value is taken at its shortest repr, so 0.1 + 0.2 gives 0.3 and
    the result does not depend on the order of the values.
    """
    total = Decimal(0)
    for value in values:
        total += Decimal(str(value))
    return float(total)
