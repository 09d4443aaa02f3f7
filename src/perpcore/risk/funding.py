"""Funding rate computation from open-interest skew.

Convention: a positive rate means longs pay shorts. All values are int
basis points per funding interval.
"""

from perpcore.fixedpoint import mul_div


def compute_funding_rate(
    long_open_interest: int,
    short_open_interest: int,
    base_rate_bps: int,
    max_rate_bps: int,
) -> int:
    """Derive the funding rate from the long/short imbalance.

    rate = base + |skew| * max / total, capped at max and signed by the
    heavier side. An empty book pays the base rate.

    Args:
        long_open_interest: Sum of long position sizes (>= 0).
        short_open_interest: Sum of |short position sizes| (>= 0).
        base_rate_bps: Rate paid when the book is empty or balanced.
        max_rate_bps: Cap on the absolute rate.

    Returns:
        Signed funding rate in bps.
    """
    if long_open_interest < 0 or short_open_interest < 0:
        raise ValueError("open interest must be non-negative")
    if max_rate_bps < 0 or base_rate_bps < 0:
        raise ValueError("funding rates must be non-negative")

    total = long_open_interest + short_open_interest
    if total == 0:
        return base_rate_bps

    skew = long_open_interest - short_open_interest
    magnitude = min(base_rate_bps + mul_div(abs(skew), max_rate_bps, total), max_rate_bps)
    return -magnitude if skew < 0 else magnitude
