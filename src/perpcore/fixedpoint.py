"""Fixed-point and basis-point arithmetic helpers.

Prices are stored as int with PRICE_DECIMALS implied decimals. Human-facing
values (config, logs) go through Decimal, never float.
"""

from decimal import Decimal

PRICE_DECIMALS = 8
PRICE_SCALE = 10**PRICE_DECIMALS
BPS = 10_000


def mul_div(a: int, b: int, denominator: int) -> int:
    """Compute a * b / denominator, truncating toward zero.

    Python's // floors, which would bias short-side results by one unit.
    Truncation keeps long and short results symmetric.

    Raises:
        ZeroDivisionError: If denominator is zero.
    """
    if denominator == 0:
        raise ZeroDivisionError("mul_div denominator is zero")
    product = a * b
    quotient = abs(product) // abs(denominator)
    if (product < 0) != (denominator < 0):
        return -quotient
    return quotient


def normalize_price(value: int, expo: int) -> int:
    """Rescale a raw attested value with exponent ``expo`` to PRICE_SCALE.

    value * 10**expo is the real price; the result is that price times
    10**PRICE_DECIMALS. Extra precision below 1e-8 is truncated toward zero.

    Args:
        value: Raw integer mantissa from the attestation.
        expo: Base-10 exponent from the attestation (typically negative).

    Returns:
        The value in 8-decimal fixed point.
    """
    shift = expo + PRICE_DECIMALS
    if shift >= 0:
        return value * 10**shift
    return mul_div(value, 1, 10**-shift)


def to_fixed(value: Decimal | str | int) -> int:
    """Convert a human-readable price (e.g. "100.25") to fixed point."""
    return int(Decimal(value) * PRICE_SCALE)


def from_fixed(value: int) -> Decimal:
    """Convert a fixed-point price back to Decimal for display."""
    return Decimal(value) / PRICE_SCALE
