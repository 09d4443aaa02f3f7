"""Tests for MarketOrchestrator and build_market wiring.

Tests verify:
- build_market registers the feed and shares one AccessControl
- a tripped breaker on ingest pauses the market and reaches the ledger
- operator trigger/reset keeps the pause state in step with the breaker
- a reset leaves an operator's earlier pause in place
- funding runs only when due
- the liquidation sweep skips healthy positions
- initial state publication
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from helpers import ADMIN, FEED_ID, KEEPER, LIQUIDATOR, OUTSIDER, attest
from perpcore.access import Role
from perpcore.admin.ledger import PaperLedger
from perpcore.config import AppSettings
from perpcore.exceptions import CircuitBreakerActive, CoolDownNotElapsed, Unauthorized
from perpcore.fixedpoint import to_fixed
from perpcore.models import IngestResult, PricePoint
from perpcore.oracle.feed import AttestedPriceFeed
from perpcore.orchestrator import Market, MarketOrchestrator, build_market

T0 = 1_700_000_000
ONE = to_fixed("1")


async def _ingest(market: Market, price: str, t: int) -> IngestResult:
    return await market.orchestrator.ingest(KEEPER, attest(price, t), 1, t)


class TestBuildMarket:
    def test_registers_feed(self, market: Market) -> None:
        assert market.registry.symbol_for(FEED_ID) == "GME/USD"
        assert market.oracle.feed_id == FEED_ID
        assert market.risk_manager.market_id == "GME-PERP"
        assert market.writer.market_id == "GME-PERP"

    def test_initial_config_from_settings(self, market: Market) -> None:
        config = market.risk_manager.config
        assert config.max_position_size == 1_000_000
        assert config.min_order_size == 1
        assert config.funding_rate_bps == 1
        assert not config.is_paused

    def test_does_not_touch_ledger(self, market: Market, ledger: PaperLedger) -> None:
        assert ledger.facts == []

    def test_components_share_roles(
        self, mock_settings: AppSettings, price_feed: AttestedPriceFeed, ledger: PaperLedger
    ) -> None:
        built = build_market(mock_settings, price_feed, ledger, ADMIN)
        with pytest.raises(Unauthorized):
            built.oracle.ingest(KEEPER, attest("100", T0), 1, T0)

        built.access.grant(ADMIN, KEEPER, Role.KEEPER)
        built.oracle.ingest(KEEPER, attest("100", T0), 1, T0)
        assert len(built.oracle.history) == 1


class TestIngest:
    @pytest.mark.asyncio
    async def test_normal_ingest_does_not_pause(
        self, market: Market, ledger: PaperLedger
    ) -> None:
        result = await _ingest(market, "100", T0)

        assert not result.circuit_breaker_tripped
        assert not market.risk_manager.is_paused
        assert ledger.facts == []

    @pytest.mark.asyncio
    async def test_sustained_deviation_pauses_market(
        self, market: Market, ledger: PaperLedger
    ) -> None:
        for i, price in enumerate(["100", "100", "100"]):
            await _ingest(market, price, T0 + i)

        signal = await _ingest(market, "111", T0 + 3)
        assert signal.is_deviated
        assert not market.risk_manager.is_paused

        tripped = await _ingest(market, "123", T0 + 4)

        assert tripped.circuit_breaker_tripped
        assert market.oracle.circuit_breaker_active
        assert market.risk_manager.config.is_paused
        assert ledger.actions() == ["pause_market"]
        with pytest.raises(CircuitBreakerActive):
            await _ingest(market, "123", T0 + 5)

    @pytest.mark.asyncio
    async def test_trip_pauses_through_risk_manager(self) -> None:
        point = PricePoint(price=ONE, confidence=0, observed_at=T0)
        oracle = MagicMock()
        oracle.ingest.return_value = IngestResult(
            point=point,
            reference_twap=ONE,
            deviation_bps=2_500,
            is_deviated=True,
            circuit_breaker_tripped=True,
        )
        risk_manager = AsyncMock()
        orchestrator = MarketOrchestrator(oracle, risk_manager, MagicMock())

        await orchestrator.ingest(KEEPER, [b""], 1, T0)

        risk_manager.pause_market.assert_awaited_once_with(KEEPER)


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_trigger_pauses_and_reset_resumes(
        self, market: Market, ledger: PaperLedger
    ) -> None:
        await market.orchestrator.trigger_circuit_breaker(KEEPER, "exchange halt", T0)

        assert market.oracle.circuit_breaker_active
        assert market.risk_manager.is_paused

        with pytest.raises(CoolDownNotElapsed):
            await market.orchestrator.reset_circuit_breaker(ADMIN, T0 + 10)
        assert market.risk_manager.is_paused

        await market.orchestrator.reset_circuit_breaker(ADMIN, T0 + 300)

        assert not market.oracle.circuit_breaker_active
        assert not market.risk_manager.is_paused
        assert ledger.actions() == ["pause_market", "resume_market"]

    @pytest.mark.asyncio
    async def test_reset_keeps_operator_pause(
        self, market: Market, ledger: PaperLedger
    ) -> None:
        await market.risk_manager.pause_market(ADMIN)
        await market.orchestrator.trigger_circuit_breaker(KEEPER, "exchange halt", T0)

        await market.orchestrator.reset_circuit_breaker(ADMIN, T0 + 300)

        assert not market.oracle.circuit_breaker_active
        assert market.risk_manager.config.is_paused
        assert ledger.actions() == ["pause_market"]

    @pytest.mark.asyncio
    async def test_outsider_cannot_trigger(self, market: Market) -> None:
        with pytest.raises(Unauthorized):
            await market.orchestrator.trigger_circuit_breaker(OUTSIDER, "halt", T0)
        assert not market.risk_manager.is_paused


class TestFunding:
    @pytest.mark.asyncio
    async def test_runs_only_when_due(self, market: Market) -> None:
        assert await market.orchestrator.maybe_update_funding(KEEPER, T0) == 1
        assert await market.orchestrator.maybe_update_funding(KEEPER, T0 + 60) is None
        assert await market.orchestrator.maybe_update_funding(KEEPER, T0 + 3_600) == 1


class TestLiquidationSweep:
    def test_liquidates_only_unhealthy(self, market: Market) -> None:
        rm = market.risk_manager
        for owner, size, margin in (("alice", 10_000, 500), ("bob", 10_000, 5_000)):
            rm.deposit_margin(KEEPER, owner, margin, T0)
            rm.record_fill(KEEPER, owner, size, ONE, T0)
        rm.deposit_margin(KEEPER, "carol", 100, T0)
        market.oracle.ingest(KEEPER, attest("1.00", T0), 1, T0)
        market.oracle.ingest(KEEPER, attest("0.97", T0 + 1), 1, T0 + 1)

        results = market.orchestrator.liquidate_unhealthy(LIQUIDATOR, T0 + 1)

        assert [r.owner for r in results] == ["alice"]
        assert rm.get_position("bob").size == 10_000
        assert rm.get_position("carol").margin == 100
        assert rm.total_open_interest == 10_000

    def test_requires_liquidator(self, market: Market) -> None:
        with pytest.raises(Unauthorized):
            market.orchestrator.liquidate_unhealthy(KEEPER, T0)


class TestPublishInitialState:
    @pytest.mark.asyncio
    async def test_pushes_config_and_headline_tier(
        self, market: Market, ledger: PaperLedger
    ) -> None:
        await market.orchestrator.publish_initial_state()

        assert ledger.actions() == [
            "update_market_config",
            "set_max_leverage",
            "update_margin_requirements",
        ]
        assert ledger.facts[1].args == (200_000,)
        assert ledger.facts[2].args == (500, 250)

        await market.orchestrator.publish_initial_state()
        assert len(ledger.facts) == 3
