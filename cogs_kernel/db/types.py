"""
Module: cogs_kernel.db.types
Responsibility: Column type constants and utility functions for financial-grade
    column types.  Centralizes precision and rounding so that every model,
    engine and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    engines and services.  MUST NOT import from any of those layers.

Invariants enforced:
    - round_money() is the ONLY sanctioned rounding function for monetary
      values.  The rounding mode is fixed per process (ROUND_HALF_UP unless
      the loaded configuration says otherwise) and never floating point.
    - No floats anywhere: to_decimal() rejects float input outright.
"""

from decimal import ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Numeric, String


# Column types: 38 digits total, 9 decimal places for money
MoneyColumn = Numeric(38, 9)
SkuColumn = String(128)
IdentifierColumn = String(64)
NotesColumn = String(4000)


# Rounding constants
MONEY_DECIMAL_PLACES = 2
STORAGE_DECIMAL_PLACES = 9
DEFAULT_ROUNDING = ROUND_HALF_UP

SUPPORTED_ROUNDING_MODES: dict[str, str] = {
    "ROUND_HALF_UP": ROUND_HALF_UP,
    "ROUND_HALF_EVEN": ROUND_HALF_EVEN,
}


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to specified decimal places.

    This is the ONLY sanctioned rounding function for monetary values.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """
    Coerce int/str/Decimal input to Decimal.  Floats are refused.

    Raises:
        TypeError: If value is a float or bool.
        ValueError: If value is not a valid number.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"{field} must be Decimal, int or str, got {type(value).__name__}")
    try:
        result = Decimal(str(value)) if isinstance(value, (int, str)) else Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"{field} is not a valid number: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"{field} must be finite, got {value!r}")
    return result
