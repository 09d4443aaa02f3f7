"""Configuration system using pydantic-settings with environment variable loading.

All thresholds are integers: prices in 8-decimal fixed point, rates and
margins in basis points, durations in seconds.
"""

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class OracleSettings(BaseSettings):
    """Price oracle adapter parameters."""

    model_config = SettingsConfigDict(env_prefix="ORACLE_")

    history_capacity: int = 60
    max_price_age_seconds: int = 10
    max_future_drift_seconds: int = 10  # publish_time tolerance ahead of now
    deviation_threshold_bps: int = 1000  # 10%, auto-breaker at 2x
    trip_on_sustained_deviation: bool = True  # second deviated ingest in a row trips
    twap_window_seconds: int = 300  # reference window for ingest deviation checks
    max_twap_window_seconds: int = 300
    circuit_breaker_cooldown_seconds: int = 300
    update_fee_per_feed: int = 1
    attestation_key: SecretStr = SecretStr("")


class RiskSettings(BaseSettings):
    """Liquidation parameters."""

    model_config = SettingsConfigDict(env_prefix="RISK_")

    liquidation_reward_bps: int = 1000  # 10% of post-PnL equity


class FundingSettings(BaseSettings):
    """Funding rate schedule.

    Rates are per funding interval. A fully one-sided book pays
    max_rate_bps; an empty book pays base_rate_bps.
    """

    model_config = SettingsConfigDict(env_prefix="FUNDING_")

    interval_seconds: int = 3600
    base_rate_bps: int = 1
    max_rate_bps: int = 100  # 1% per hour


class MarketSettings(BaseSettings):
    """Initial market configuration mirrored to the settlement ledger."""

    model_config = SettingsConfigDict(env_prefix="MARKET_")

    market_id: str = "GME-PERP"
    feed_id: str = "0x" + "00" * 32
    symbol: str = "GME/USD"
    max_position_size: int = 1_000_000
    min_order_size: int = 1
    maker_fee_bps: int = -2  # negative = rebate
    taker_fee_bps: int = 5


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    admin_identity: str = "operator"  # holds ADMIN and KEEPER in paper runs
    oracle: OracleSettings = OracleSettings()
    risk: RiskSettings = RiskSettings()
    funding: FundingSettings = FundingSettings()
    market: MarketSettings = MarketSettings()
