"""Basis-point fixed-point helpers.

All ratios in the engine (leverage, health factor, LTV, tolerances) are integer
basis points where 10000 = 1.0x. Amounts are ``Decimal``. Every division goes
through :func:`checked_div` so a zero denominator fails loudly with the name of
the quantity being computed instead of a bare ``DivisionByZero``.
"""

from decimal import Decimal, ROUND_DOWN
from typing import Union

from src.core.constants import BPS_DECIMAL

Number = Union[int, Decimal]


def checked_div(numerator: Number, denominator: Number, what: str) -> Decimal:
    """
    Divide, requiring a non-zero denominator.

    Args:
        numerator: Dividend
        denominator: Divisor, must be non-zero
        what: Name of the quantity, used in the error message

    Returns:
        numerator / denominator as Decimal

    Raises:
        ZeroDivisionError: If denominator is zero
    """
    if denominator == 0:
        raise ZeroDivisionError(f"Zero denominator computing {what}")
    return Decimal(numerator) / Decimal(denominator)


def saturating_sub(a: Decimal, b: Decimal) -> Decimal:
    """a - b, clamped at zero."""
    result = a - b
    return result if result > 0 else Decimal("0")


def bps_mul(amount: Number, bps: Number) -> Decimal:
    """Scale an amount by a basis-point ratio: amount * bps / 10000."""
    return Decimal(amount) * Decimal(bps) / BPS_DECIMAL


def from_bps(bps: Number) -> Decimal:
    """Convert basis points (15000) to a plain ratio (1.5)."""
    return Decimal(bps) / BPS_DECIMAL


def quantize_down(amount: Decimal, decimals: int) -> Decimal:
    """Round an amount down to the given token precision."""
    if amount <= 0:
        return Decimal("0")
    quantum = Decimal(1).scaleb(-decimals)
    return amount.quantize(quantum, rounding=ROUND_DOWN)
