"""Shared test fixtures for perpcore."""

import pytest

from helpers import ADMIN, ATTESTATION_KEY, FEED_HEX, KEEPER, LIQUIDATOR
from perpcore.access import Role
from perpcore.admin.ledger import PaperLedger
from perpcore.config import (
    AppSettings,
    FundingSettings,
    MarketSettings,
    OracleSettings,
    RiskSettings,
)
from perpcore.oracle.feed import AttestedPriceFeed
from perpcore.orchestrator import Market, build_market


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with default thresholds, a test feed id and zero fees."""
    return AppSettings(
        log_level="DEBUG",
        oracle=OracleSettings(),
        risk=RiskSettings(),
        funding=FundingSettings(),
        market=MarketSettings(
            market_id="GME-PERP",
            feed_id=FEED_HEX,
            symbol="GME/USD",
            max_position_size=1_000_000,
            min_order_size=1,
            maker_fee_bps=0,
            taker_fee_bps=0,
        ),
    )


@pytest.fixture
def price_feed() -> AttestedPriceFeed:
    return AttestedPriceFeed(ATTESTATION_KEY, fee_per_update=1)


@pytest.fixture
def ledger() -> PaperLedger:
    return PaperLedger()


@pytest.fixture
def market(
    mock_settings: AppSettings, price_feed: AttestedPriceFeed, ledger: PaperLedger
) -> Market:
    """A fully wired market with a keeper and a liquidator granted."""
    built = build_market(mock_settings, price_feed, ledger, ADMIN)
    built.access.grant(ADMIN, KEEPER, Role.KEEPER)
    built.access.grant(ADMIN, LIQUIDATOR, Role.LIQUIDATOR)
    return built
