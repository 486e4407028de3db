"""
Module: settlement_kernel.db.types
Responsibility: Precision constants and rounding helpers for financial-grade
    values.  Centralizes precision and rounding so that every model,
    engine and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, selectors/ and the engines.  MUST NOT import from any of those.

Invariants enforced:
    - Money is stored with 2 decimal places, share percentages with 4 and
      tax rates with 2.
    - round_money() and round_percent() are the ONLY sanctioned rounding
      functions for settlement values.
    CRITICAL: No floats anywhere.  All amounts use Decimal.
"""

from decimal import ROUND_HALF_UP, Decimal


MONEY_DECIMAL_PLACES = 2
PERCENT_DECIMAL_PLACES = 4
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Decimal | int | str) -> Decimal:
    """
    Coerce an int, str or Decimal to Decimal.

    Floats are rejected: binary floating point must never enter monetary
    arithmetic.

    Raises:
        TypeError: If value is a float.
    """
    if isinstance(value, float):
        raise TypeError("Floats are not accepted for monetary values")
    if isinstance(value, Decimal):
        return value
    return Decimal(value)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to specified decimal places.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def round_percent(
    value: Decimal,
    decimal_places: int = PERCENT_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a share percentage (4 decimal places by default)."""
    return round_money(value, decimal_places=decimal_places, rounding=rounding)
