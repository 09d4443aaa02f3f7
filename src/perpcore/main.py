"""Entry point for a paper-mode perpcore market.

Wires all components for the market in AppSettings against a PaperLedger,
publishes the starting config and tier limits, then keeps funding current
until stopped.

Handles SIGINT/SIGTERM for graceful shutdown.

Component wiring order (in build_paper_market):
1. AppSettings (configuration)
2. Logging setup
3. AttestedPriceFeed (keyed by ORACLE_ATTESTATION_KEY)
4. PaperLedger (settlement ledger stand-in)
5. build_market (access, registry, oracle, writer, risk manager, orchestrator)
"""

import asyncio
import signal
import time

from perpcore.admin.ledger import PaperLedger
from perpcore.config import AppSettings
from perpcore.exceptions import LedgerWriteFailed
from perpcore.logging import get_logger, setup_logging, unbind_market
from perpcore.oracle.feed import AttestedPriceFeed
from perpcore.orchestrator import Market, build_market


def build_paper_market(settings: AppSettings) -> Market:
    """Build a market whose administrative facts go to an in-memory ledger.

    Raises:
        ValueError: If no attestation key is configured.
    """
    key = settings.oracle.attestation_key.get_secret_value()
    if not key:
        raise ValueError("ORACLE_ATTESTATION_KEY must be set")

    price_feed = AttestedPriceFeed(key.encode(), settings.oracle.update_fee_per_feed)
    return build_market(settings, price_feed, PaperLedger(), settings.admin_identity)


def _setup_signal_handlers(stop: asyncio.Event) -> None:
    """Set stop on SIGINT/SIGTERM. Must be called with the event loop running."""
    logger = get_logger("perpcore.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


async def funding_loop(
    market: Market, keeper: str, poll_seconds: float, stop: asyncio.Event
) -> None:
    """Update funding whenever it is due and retry queued ledger facts.

    Runs at least one tick, then one per poll_seconds until stop is set.
    Ledger failures are logged and left queued for the next tick.
    """
    logger = get_logger("perpcore.main")
    while True:
        try:
            if market.writer.pending_count:
                await market.writer.retry_pending()
            await market.orchestrator.maybe_update_funding(keeper, int(time.time()))
        except LedgerWriteFailed as exc:
            logger.error(
                "keeper_tick_failed",
                action=exc.action,
                pending=market.writer.pending_count,
            )

        try:
            await asyncio.wait_for(stop.wait(), timeout=poll_seconds)
        except asyncio.TimeoutError:
            continue
        return


async def run() -> None:
    """Run a paper market until SIGINT/SIGTERM."""
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level)
    logger = get_logger("perpcore.main")

    # 3-5. Build all components
    market = build_paper_market(settings)
    await market.orchestrator.publish_initial_state()

    stop = asyncio.Event()
    _setup_signal_handlers(stop)

    logger.info(
        "paper_market_started",
        symbol=settings.market.symbol,
        admin=settings.admin_identity,
        funding_interval=settings.funding.interval_seconds,
    )

    await funding_loop(
        market,
        settings.admin_identity,
        settings.funding.interval_seconds,
        stop,
    )
    logger.info("paper_market_stopped", positions=len(market.risk_manager.positions()))
    unbind_market()


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
