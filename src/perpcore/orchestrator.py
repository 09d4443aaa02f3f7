"""Market orchestrator -- wires the oracle, risk manager and writer together.

The oracle adapter never calls the risk manager. Instead ingest returns an
IngestResult, and the orchestrator turns a tripped circuit breaker into a
market pause. Operator breaker triggers and resets go through here too.
A reset only lifts a pause that the breaker itself put in place; a market
an operator had already paused stays paused.

Component wiring order (in build_market):
1. AccessControl (roles)
2. FeedRegistry (feed id -> symbol)
3. OracleAdapter (price history, TWAP, breaker)
4. AdministrativeWriter (ledger relay)
5. RiskManager (positions, tiers, funding, pause)
6. MarketOrchestrator
"""

from __future__ import annotations

from dataclasses import dataclass

from perpcore.access import AccessControl, Role
from perpcore.admin.ledger import LedgerClient
from perpcore.admin.writer import AdministrativeWriter
from perpcore.config import AppSettings, FundingSettings
from perpcore.exceptions import PositionHealthy
from perpcore.logging import bind_market, get_logger
from perpcore.models import IngestResult, LiquidationResult
from perpcore.oracle.adapter import OracleAdapter
from perpcore.oracle.feed import FeedRegistry, PriceFeedSource, feed_id_from_hex
from perpcore.risk.manager import RiskManager
from perpcore.risk.tiers import TierTable

logger = get_logger(__name__)


class MarketOrchestrator:
    """Sequences cross-component effects for one market.

    Args:
        oracle: The market's oracle adapter.
        risk_manager: The market's risk manager.
        access: Role guard shared by all components.
        funding_settings: Funding interval used by maybe_update_funding.
    """

    def __init__(
        self,
        oracle: OracleAdapter,
        risk_manager: RiskManager,
        access: AccessControl,
        funding_settings: FundingSettings | None = None,
    ) -> None:
        self._oracle = oracle
        self._risk_manager = risk_manager
        self._access = access
        self._funding_settings = funding_settings or FundingSettings()
        self._paused_by_breaker = False

    async def ingest(
        self, caller: str, batch: list[bytes], paid_fee: int, now: int
    ) -> IngestResult:
        """Ingest a price batch and pause the market if the breaker tripped."""
        result = self._oracle.ingest(caller, batch, paid_fee, now)
        if result.circuit_breaker_tripped:
            logger.critical(
                "auto_pause_on_circuit_breaker",
                price=result.point.price,
                reference_twap=result.reference_twap,
                deviation_bps=result.deviation_bps,
            )
            await self._pause_for_breaker(caller)
        return result

    async def trigger_circuit_breaker(self, caller: str, reason: str, now: int) -> None:
        """Operator trigger: trip the breaker and pause the market."""
        self._oracle.trigger_circuit_breaker(caller, reason, now)
        await self._pause_for_breaker(caller)

    async def reset_circuit_breaker(self, caller: str, now: int) -> None:
        """Admin reset after cool-down: clear the breaker and undo its pause."""
        self._oracle.reset_circuit_breaker(caller, now)
        resume, self._paused_by_breaker = self._paused_by_breaker, False
        if resume:
            await self._risk_manager.resume_market(caller)
        else:
            logger.info("market_left_paused", caller=caller)

    async def maybe_update_funding(self, caller: str, now: int) -> int | None:
        """Update funding only when the interval has elapsed.

        Returns:
            The new rate in bps, or None if not yet due.
        """
        last = self._risk_manager.last_funding_update
        if last is not None and now - last < self._funding_settings.interval_seconds:
            return None
        return await self._risk_manager.update_funding_rate(caller, now)

    def liquidate_unhealthy(self, caller: str, now: int) -> list[LiquidationResult]:
        """Liquidate every position that is below maintenance margin.

        Positions are assessed one at a time, so each liquidation sees the
        state left by the previous one.
        """
        self._access.require(caller, Role.LIQUIDATOR)
        results: list[LiquidationResult] = []
        for position in self._risk_manager.positions():
            if position.size == 0:
                continue
            try:
                results.append(self._risk_manager.liquidate(caller, position.owner, now))
            except PositionHealthy:
                continue

        if results:
            logger.warning("liquidation_sweep_complete", liquidated=len(results))
        return results

    async def _pause_for_breaker(self, caller: str) -> None:
        self._paused_by_breaker = not self._risk_manager.config.is_paused
        await self._risk_manager.pause_market(caller)

    async def publish_initial_state(self) -> None:
        """Mirror the starting config and tier limits to the ledger."""
        await self._risk_manager.publish_state()


@dataclass
class Market:
    """All components of one market, as wired by build_market."""

    access: AccessControl
    registry: FeedRegistry
    oracle: OracleAdapter
    writer: AdministrativeWriter
    risk_manager: RiskManager
    orchestrator: MarketOrchestrator


def build_market(
    settings: AppSettings,
    price_feed: PriceFeedSource,
    ledger: LedgerClient,
    admin: str,
    tiers: TierTable | None = None,
) -> Market:
    """Build all components for the market described by settings.

    Does not talk to the ledger; call
    ``await market.orchestrator.publish_initial_state()`` before trading.
    """
    market_settings = settings.market
    bind_market(market_settings.market_id)

    access = AccessControl(admin)
    registry = FeedRegistry(access)
    feed_id = feed_id_from_hex(market_settings.feed_id)
    registry.register(admin, feed_id, market_settings.symbol)

    oracle = OracleAdapter(feed_id, price_feed, access, settings.oracle)
    writer = AdministrativeWriter(ledger, market_settings.market_id)
    risk_manager = RiskManager(
        oracle,
        writer,
        access,
        risk_settings=settings.risk,
        funding_settings=settings.funding,
        market_settings=market_settings,
        tiers=tiers,
    )
    orchestrator = MarketOrchestrator(oracle, risk_manager, access, settings.funding)

    logger.info(
        "market_built",
        symbol=market_settings.symbol,
        feed_id=market_settings.feed_id,
        tiers=len(risk_manager.tiers),
    )
    return Market(
        access=access,
        registry=registry,
        oracle=oracle,
        writer=writer,
        risk_manager=risk_manager,
        orchestrator=orchestrator,
    )
