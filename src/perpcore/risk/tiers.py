"""Leverage tier tables.

A TierTable is ordered by ascending max_position_notional. A position uses
the first tier whose cap covers its notional; the last tier's cap is an
open-ended ceiling.
"""

from collections.abc import Iterable, Iterator, Sequence

from perpcore.exceptions import InvalidTier
from perpcore.fixedpoint import BPS
from perpcore.models import LeverageTier


def validate_tiers(tiers: Sequence[LeverageTier]) -> None:
    """Check tier table invariants.

    Raises:
        InvalidTier: If the table is empty, any tier has zero leverage,
            maintenance above initial margin, a margin outside (0, BPS],
            or caps are not strictly ascending.
    """
    if not tiers:
        raise InvalidTier("tier table must not be empty")

    previous_cap = 0
    for index, tier in enumerate(tiers):
        if tier.max_leverage_bps <= 0:
            raise InvalidTier(f"tier {index}: max_leverage_bps must be positive")
        if not 0 < tier.initial_margin_bps <= BPS:
            raise InvalidTier(f"tier {index}: initial_margin_bps out of range")
        if tier.maintenance_margin_bps < 0:
            raise InvalidTier(f"tier {index}: maintenance_margin_bps must be non-negative")
        if tier.maintenance_margin_bps > tier.initial_margin_bps:
            raise InvalidTier(
                f"tier {index}: maintenance {tier.maintenance_margin_bps} bps exceeds "
                f"initial {tier.initial_margin_bps} bps"
            )
        if tier.max_position_notional <= previous_cap:
            raise InvalidTier(f"tier {index}: caps must be positive and strictly ascending")
        previous_cap = tier.max_position_notional


class TierTable:
    """Immutable, validated sequence of LeverageTiers."""

    def __init__(self, tiers: Iterable[LeverageTier]) -> None:
        self._tiers = tuple(tiers)
        validate_tiers(self._tiers)

    def __iter__(self) -> Iterator[LeverageTier]:
        return iter(self._tiers)

    def __len__(self) -> int:
        return len(self._tiers)

    def __getitem__(self, index: int) -> LeverageTier:
        return self._tiers[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TierTable):
            return NotImplemented
        return self._tiers == other._tiers

    def __repr__(self) -> str:
        return f"TierTable({list(self._tiers)!r})"

    @property
    def headline(self) -> LeverageTier:
        """The smallest-notional tier, whose limits are published to the ledger."""
        return self._tiers[0]

    def tier_for(self, notional: int) -> LeverageTier:
        """Return the tier that applies to a position of the given notional."""
        for tier in self._tiers:
            if notional <= tier.max_position_notional:
                return tier
        return self._tiers[-1]


def earnings_tiers(baseline: TierTable) -> TierTable:
    """Derive the earnings-mode table: half the leverage, double the initial margin.

    Leverage never drops below 1 bps and initial margin is capped at 100%;
    maintenance margin is unchanged so it stays at or below initial.
    """
    return TierTable(
        LeverageTier(
            max_position_notional=tier.max_position_notional,
            max_leverage_bps=max(tier.max_leverage_bps // 2, 1),
            initial_margin_bps=min(tier.initial_margin_bps * 2, BPS),
            maintenance_margin_bps=tier.maintenance_margin_bps,
        )
        for tier in baseline
    )


def default_tiers() -> TierTable:
    """Stock tier schedule: 20x up to 100k notional, tapering to 2x."""
    return TierTable(
        [
            LeverageTier(100_000, 200_000, 500, 250),
            LeverageTier(500_000, 100_000, 1_000, 500),
            LeverageTier(2_000_000, 50_000, 2_000, 1_000),
            LeverageTier(10**18, 20_000, 5_000, 2_500),
        ]
    )
