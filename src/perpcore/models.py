"""Shared data models for the oracle, risk and administrative components.

CRITICAL: Prices are int in 8-decimal fixed point (see fixedpoint.py).
Rates, fees and margins are int basis points. Never use float here.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class PricePoint:
    """A normalized price observation. Immutable once recorded."""

    price: int
    confidence: int
    observed_at: int  # unix seconds


@dataclass(frozen=True)
class PriceReading:
    """Result of OracleAdapter.current_price."""

    price: int
    confidence: int
    timestamp: int


@dataclass(frozen=True)
class IngestResult:
    """Outcome of a price ingest, including the anomaly signal.

    The orchestrator reads circuit_breaker_tripped and pauses the market;
    the adapter never calls into the risk manager itself.
    """

    point: PricePoint
    reference_twap: int | None
    deviation_bps: int
    is_deviated: bool
    circuit_breaker_tripped: bool


@dataclass(frozen=True)
class LeverageTier:
    """Margin requirements for positions up to max_position_notional.

    Invariant: maintenance_margin_bps <= initial_margin_bps.
    """

    max_position_notional: int  # quote units
    max_leverage_bps: int  # 10x = 100_000
    initial_margin_bps: int
    maintenance_margin_bps: int


@dataclass
class Position:
    """A single owner's position in the market.

    size > 0 is long, size < 0 is short, 0 means flat.
    """

    owner: str
    size: int = 0
    avg_entry_price: int = 0
    margin: int = 0
    last_update: int = 0

    @property
    def is_open(self) -> bool:
        return self.size != 0

    @property
    def is_long(self) -> bool:
        return self.size > 0


@dataclass
class MarketConfig:
    """Per-market configuration. Every change is mirrored to the ledger."""

    is_paused: bool = False
    is_earnings_mode: bool = False
    max_position_size: int = 0
    min_order_size: int = 0
    maker_fee_bps: int = 0  # negative = rebate
    taker_fee_bps: int = 0
    funding_rate_bps: int = 0


@dataclass(frozen=True)
class PositionHealth:
    """Margin health snapshot for a single position."""

    owner: str
    healthy: bool
    health_factor_bps: int
    equity: int
    maintenance_required: int
    notional: int
    mark_price: int


@dataclass(frozen=True)
class FillResult:
    """Outcome of recording a ledger fill against a position."""

    position: Position
    fee: int  # negative = rebate credited to margin
    realized_pnl: int


@dataclass(frozen=True)
class LiquidationResult:
    """Outcome of a successful liquidation.

    remaining_margin is what is left after the reward; it is settled by
    the ledger, not returned by this core.
    """

    owner: str
    liquidator: str
    size: int
    mark_price: int
    pnl: int
    equity: int
    reward: int
    remaining_margin: int
    timestamp: int
