"""Tests for the paper-mode entry point wiring and keeper loop."""

import asyncio

import pytest

from helpers import FEED_HEX, KEEPER
from perpcore.access import Role
from perpcore.admin.ledger import PaperLedger
from perpcore.config import AppSettings, MarketSettings, OracleSettings
from perpcore.main import build_paper_market, funding_loop
from perpcore.orchestrator import Market


def _settings(key: str) -> AppSettings:
    return AppSettings(
        admin_identity="ops",
        oracle=OracleSettings(attestation_key=key, update_fee_per_feed=2),
        market=MarketSettings(feed_id=FEED_HEX),
    )


class TestBuildPaperMarket:
    def test_builds_market_for_admin(self) -> None:
        market = build_paper_market(_settings("secret"))

        assert market.access.admin == "ops"
        assert market.access.has_role("ops", Role.KEEPER)
        assert market.oracle.quote_update_fee([b"x", b"y"]) == 4

    def test_missing_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            build_paper_market(_settings(""))


class TestFundingLoop:
    @pytest.mark.asyncio
    async def test_single_tick_updates_funding(self, market: Market) -> None:
        stop = asyncio.Event()
        stop.set()

        await funding_loop(market, KEEPER, 0.01, stop)

        assert market.risk_manager.last_funding_update is not None
        assert market.writer.applied["funding_rate"] == 1

    @pytest.mark.asyncio
    async def test_ledger_failure_is_retried_next_tick(
        self, market: Market, ledger: PaperLedger
    ) -> None:
        stop = asyncio.Event()
        stop.set()
        ledger.fail_actions.add("set_funding_rate")

        await funding_loop(market, KEEPER, 0.01, stop)
        assert market.writer.pending_count == 1

        ledger.fail_actions.clear()
        await funding_loop(market, KEEPER, 0.01, stop)

        assert market.writer.pending_count == 0
        assert ledger.actions() == ["set_funding_rate"]
