"""Risk layer -- leverage tiers, margin health, liquidation and funding."""

from perpcore.risk.funding import compute_funding_rate
from perpcore.risk.manager import (
    MAX_HEALTH_FACTOR_BPS,
    RiskManager,
    liquidation_price,
    notional_value,
    unrealized_pnl,
)
from perpcore.risk.tiers import TierTable, default_tiers, earnings_tiers, validate_tiers

__all__ = [
    "MAX_HEALTH_FACTOR_BPS",
    "RiskManager",
    "TierTable",
    "compute_funding_rate",
    "default_tiers",
    "earnings_tiers",
    "liquidation_price",
    "notional_value",
    "unrealized_pnl",
    "validate_tiers",
]
