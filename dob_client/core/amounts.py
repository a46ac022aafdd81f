"""
Amount conversion between human decimal strings and ledger base units.

Ledger amounts are integers with 7 fractional digits (stroops). Decimal
input is always truncated, never rounded, so a parsed amount can never
exceed what the user typed. Display formatting rounds to 2 decimals and is
not an inverse of parsing.
"""

from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP
from typing import Union

from .execution.errors import InvalidAmount


STROOPS_PER_UNIT = 10_000_000
BPS_DENOMINATOR = 10_000

_TWO_PLACES = Decimal("0.01")


def _parse_decimal(value: Union[str, int, Decimal]) -> Decimal:
    if isinstance(value, float):
        # Binary floats never reach base units
        raise InvalidAmount(f"Amount must be a decimal string, got float {value!r}")
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Not a numeric amount: {value!r}")
    if not parsed.is_finite():
        raise InvalidAmount(f"Not a finite amount: {value!r}")
    return parsed


def to_base_units(value: Union[str, int, Decimal]) -> int:
    """
    Parse a human decimal amount into base units.

    Truncates toward zero: "1.999999995" -> 19999999. Sign is not
    validated here; mutating operations enforce positivity themselves.

    Raises:
        InvalidAmount: if the input is not a finite number
    """
    scaled = _parse_decimal(value) * STROOPS_PER_UNIT
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def to_decimal_string(base_units: int) -> str:
    """Format base units for display with exactly 2 decimals (lossy)."""
    units = Decimal(int(base_units)) / STROOPS_PER_UNIT
    return str(units.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def bps_to_percent(bps: int) -> str:
    """Basis points to a percentage string: 1050 -> "10.50"."""
    percent = Decimal(int(bps)) / 100
    return str(percent.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def percent_to_bps(percent: Union[str, int, Decimal]) -> int:
    """Percentage string to basis points, truncating: "10.555" -> 1055."""
    scaled = _parse_decimal(percent) * 100
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


__all__ = [
    "STROOPS_PER_UNIT",
    "BPS_DENOMINATOR",
    "to_base_units",
    "to_decimal_string",
    "bps_to_percent",
    "percent_to_bps",
]
