"""Risk manager: margin, health, liquidation, funding and market controls.

Owns every Position, open interest, the MarketConfig and the leverage
tier tables. Prices come only from OracleAdapter.current_price; market
controls go out only through the AdministrativeWriter.

Units:
  - prices: 8-decimal fixed point
  - size: signed integer quantity (long > 0, short < 0)
  - margin, notional, equity: integer quote units
  - pnl = size * (mark - entry) / entry

Administrative operations update in-core state first, then push to the
ledger. If a push fails the LedgerWriteFailed propagates to the caller
once every fact of the operation is queued in the writer for retry.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import replace
from functools import partial
from typing import TYPE_CHECKING

from perpcore.access import AccessControl, Role
from perpcore.config import FundingSettings, MarketSettings, RiskSettings
from perpcore.exceptions import (
    CircuitBreakerActive,
    InsufficientMargin,
    InvalidPrice,
    LedgerWriteFailed,
    MarketPaused,
    PositionHealthy,
    PositionLimitExceeded,
    TooSoon,
)
from perpcore.fixedpoint import BPS, PRICE_SCALE, mul_div
from perpcore.logging import get_logger
from perpcore.models import (
    FillResult,
    LeverageTier,
    LiquidationResult,
    MarketConfig,
    Position,
    PositionHealth,
)
from perpcore.risk.funding import compute_funding_rate
from perpcore.risk.tiers import TierTable, default_tiers, earnings_tiers

if TYPE_CHECKING:
    from perpcore.admin.writer import AdministrativeWriter
    from perpcore.oracle.adapter import OracleAdapter

logger = get_logger(__name__)

MAX_HEALTH_FACTOR_BPS = 2**256 - 1


def unrealized_pnl(size: int, avg_entry_price: int, mark_price: int) -> int:
    """size * (mark - entry) / entry, sign-correct for shorts."""
    if size == 0 or avg_entry_price <= 0:
        return 0
    return mul_div(size, mark_price - avg_entry_price, avg_entry_price)


def notional_value(size: int, mark_price: int) -> int:
    """|size| * mark_price in quote units."""
    return mul_div(abs(size), mark_price, PRICE_SCALE)


def liquidation_price(position: Position) -> int:
    """Price at which the position's margin is exhausted.

    Long: entry - margin * scale / |size|, floored at zero.
    Short: entry + margin * scale / |size|.
    Flat positions have no liquidation price and return 0.
    """
    if position.size == 0:
        return 0
    buffer = mul_div(position.margin, PRICE_SCALE, abs(position.size))
    if position.size > 0:
        return max(position.avg_entry_price - buffer, 0)
    return position.avg_entry_price + buffer


class RiskManager:
    """Position-level and market-level risk engine for one market.

    Args:
        oracle: Source of the current validated price.
        writer: Relay for administrative facts to the settlement ledger.
        access: Role guard shared with the rest of the market.
        risk_settings: Liquidation parameters.
        funding_settings: Funding interval and rate bounds.
        market_settings: Initial position limits and fees.
        tiers: Baseline leverage tier table. Defaults to default_tiers().
    """

    def __init__(
        self,
        oracle: OracleAdapter,
        writer: AdministrativeWriter,
        access: AccessControl,
        risk_settings: RiskSettings | None = None,
        funding_settings: FundingSettings | None = None,
        market_settings: MarketSettings | None = None,
        tiers: TierTable | None = None,
    ) -> None:
        self._oracle = oracle
        self._writer = writer
        self._access = access
        self._risk_settings = risk_settings or RiskSettings()
        self._funding_settings = funding_settings or FundingSettings()
        market = market_settings or MarketSettings()

        self._config = MarketConfig(
            max_position_size=market.max_position_size,
            min_order_size=market.min_order_size,
            maker_fee_bps=market.maker_fee_bps,
            taker_fee_bps=market.taker_fee_bps,
            funding_rate_bps=self._funding_settings.base_rate_bps,
        )
        self._baseline_tiers = tiers or default_tiers()
        self._active_tiers = self._baseline_tiers
        self._positions: dict[str, Position] = {}
        self._long_open_interest = 0
        self._short_open_interest = 0
        self._last_funding_update: int | None = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Read surface
    # ------------------------------------------------------------------

    @property
    def market_id(self) -> str:
        return self._writer.market_id

    @property
    def config(self) -> MarketConfig:
        """Snapshot of the market configuration."""
        return replace(self._config)

    @property
    def tiers(self) -> TierTable:
        """The tier table currently in force (earnings-adjusted when enabled)."""
        return self._active_tiers

    @property
    def baseline_tiers(self) -> TierTable:
        return self._baseline_tiers

    @property
    def is_paused(self) -> bool:
        """Paused administratively or by a tripped circuit breaker."""
        return self._config.is_paused or self._oracle.circuit_breaker_active

    @property
    def long_open_interest(self) -> int:
        return self._long_open_interest

    @property
    def short_open_interest(self) -> int:
        return self._short_open_interest

    @property
    def total_open_interest(self) -> int:
        """Signed sum of all position sizes."""
        return self._long_open_interest - self._short_open_interest

    @property
    def last_funding_update(self) -> int | None:
        return self._last_funding_update

    def get_position(self, owner: str) -> Position:
        """Return a copy of owner's position (flat if none exists)."""
        position = self._positions.get(owner)
        return replace(position) if position is not None else Position(owner=owner)

    def positions(self) -> list[Position]:
        """Return copies of all tracked positions."""
        return [replace(p) for p in self._positions.values()]

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def position_health(self, owner: str, now: int) -> PositionHealth:
        """Evaluate owner's position against maintenance margin at the current price.

        Flat positions are always healthy with the maximal health factor and
        do not read the oracle.

        Raises:
            StalePrice: If the oracle has no fresh price.
        """
        position = self._positions.get(owner)
        if position is None or position.size == 0:
            return PositionHealth(
                owner=owner,
                healthy=True,
                health_factor_bps=MAX_HEALTH_FACTOR_BPS,
                equity=position.margin if position is not None else 0,
                maintenance_required=0,
                notional=0,
                mark_price=0,
            )
        mark_price = self._oracle.current_price(now).price
        return self._assess(position, mark_price)

    def _assess(self, position: Position, mark_price: int) -> PositionHealth:
        pnl = unrealized_pnl(position.size, position.avg_entry_price, mark_price)
        equity = max(position.margin + pnl, 0)
        notional = notional_value(position.size, mark_price)
        tier = self._active_tiers.tier_for(notional)
        maintenance_required = mul_div(notional, tier.maintenance_margin_bps, BPS)

        if maintenance_required == 0:
            health_factor = MAX_HEALTH_FACTOR_BPS
        else:
            health_factor = mul_div(equity, BPS, maintenance_required)

        return PositionHealth(
            owner=position.owner,
            healthy=equity >= maintenance_required,
            health_factor_bps=health_factor,
            equity=equity,
            maintenance_required=maintenance_required,
            notional=notional,
            mark_price=mark_price,
        )

    def _check_initial_margin(self, owner: str, size: int, entry: int, margin: int, mark: int) -> None:
        notional = notional_value(size, mark)
        tier = self._active_tiers.tier_for(notional)
        equity = max(margin + unrealized_pnl(size, entry, mark), 0)
        required = mul_div(notional, tier.initial_margin_bps, BPS)
        if equity < required or notional * BPS > tier.max_leverage_bps * equity:
            raise InsufficientMargin(
                f"{owner}: equity {equity} below initial margin {required} "
                f"for notional {notional}"
            )

    # ------------------------------------------------------------------
    # Position updates reported by the ledger
    # ------------------------------------------------------------------

    def record_fill(
        self,
        caller: str,
        owner: str,
        size_delta: int,
        fill_price: int,
        now: int,
        is_maker: bool = False,
    ) -> FillResult:
        """Apply an executed trade to owner's position.

        Increasing fills move the average entry to the size-weighted price;
        reducing fills realize PnL into margin at the old entry; a fill that
        flips the side re-enters the remainder at fill_price. The maker or
        taker fee is charged to margin (a negative maker fee is a rebate).

        Raises:
            Unauthorized: If caller is not a keeper.
            MarketPaused: If the market is paused.
            ValueError: If the fill is zero or below the minimum order size.
            InvalidPrice: If fill_price is not positive.
            PositionLimitExceeded: If |new size| exceeds max_position_size.
            InsufficientMargin: If a risk-increasing fill leaves the position
                below the initial margin of its tier.
        """
        self._access.require(caller, Role.KEEPER)
        if self.is_paused:
            raise MarketPaused(f"market {self.market_id} is paused")
        if size_delta == 0 or abs(size_delta) < self._config.min_order_size:
            raise ValueError(
                f"order size {size_delta} below minimum {self._config.min_order_size}"
            )
        if fill_price <= 0:
            raise InvalidPrice(f"fill price must be positive, got {fill_price}")

        current = self._positions.get(owner) or Position(owner=owner)
        old_size, old_entry = current.size, current.avg_entry_price
        new_size = old_size + size_delta
        if abs(new_size) > self._config.max_position_size:
            raise PositionLimitExceeded(
                f"{owner}: size {new_size} exceeds limit {self._config.max_position_size}"
            )

        realized_pnl = 0
        if old_size == 0 or (old_size > 0) == (size_delta > 0):
            new_entry = mul_div(
                abs(old_size) * old_entry + abs(size_delta) * fill_price, 1, abs(new_size)
            )
        else:
            closed = min(abs(size_delta), abs(old_size))
            signed_closed = closed if old_size > 0 else -closed
            realized_pnl = unrealized_pnl(signed_closed, old_entry, fill_price)
            if new_size == 0:
                new_entry = 0
            elif abs(size_delta) > abs(old_size):
                new_entry = fill_price
            else:
                new_entry = old_entry

        fee_bps = self._config.maker_fee_bps if is_maker else self._config.taker_fee_bps
        fee = mul_div(notional_value(size_delta, fill_price), fee_bps, BPS)
        new_margin = max(current.margin + realized_pnl - fee, 0)

        increases_risk = abs(new_size) > abs(old_size) or (old_size * new_size < 0)
        if new_size != 0 and increases_risk:
            self._check_initial_margin(owner, new_size, new_entry, new_margin, fill_price)

        self._remove_open_interest(old_size)
        self._add_open_interest(new_size)
        position = Position(
            owner=owner,
            size=new_size,
            avg_entry_price=new_entry,
            margin=new_margin,
            last_update=now,
        )
        self._store(position)

        logger.info(
            "fill_recorded",
            owner=owner,
            size_delta=size_delta,
            fill_price=fill_price,
            new_size=new_size,
            avg_entry_price=new_entry,
            fee=fee,
            realized_pnl=realized_pnl,
        )
        return FillResult(position=replace(position), fee=fee, realized_pnl=realized_pnl)

    def deposit_margin(self, caller: str, owner: str, amount: int, now: int) -> Position:
        """Credit collateral to owner's position."""
        self._access.require(caller, Role.KEEPER)
        if amount <= 0:
            raise ValueError(f"deposit must be positive: {amount}")

        current = self._positions.get(owner) or Position(owner=owner)
        position = replace(current, margin=current.margin + amount, last_update=now)
        self._store(position)
        logger.info("margin_deposited", owner=owner, amount=amount, margin=position.margin)
        return replace(position)

    def withdraw_margin(self, caller: str, owner: str, amount: int, now: int) -> Position:
        """Debit collateral from owner's position.

        Raises:
            MarketPaused: If the market is paused.
            InsufficientMargin: If amount exceeds margin, or an open position
                would fall below initial margin at the current price.
            StalePrice: If the position is open and no fresh price exists.
        """
        self._access.require(caller, Role.KEEPER)
        if amount <= 0:
            raise ValueError(f"withdrawal must be positive: {amount}")
        if self.is_paused:
            raise MarketPaused(f"market {self.market_id} is paused")

        current = self._positions.get(owner) or Position(owner=owner)
        if amount > current.margin:
            raise InsufficientMargin(f"{owner}: withdrawal {amount} exceeds margin {current.margin}")

        remaining = current.margin - amount
        if current.size != 0:
            mark_price = self._oracle.current_price(now).price
            self._check_initial_margin(
                owner, current.size, current.avg_entry_price, remaining, mark_price
            )

        position = replace(current, margin=remaining, last_update=now)
        self._store(position)
        logger.info("margin_withdrawn", owner=owner, amount=amount, margin=remaining)
        return replace(position)

    # ------------------------------------------------------------------
    # Liquidation
    # ------------------------------------------------------------------

    def liquidate(self, caller: str, owner: str, now: int) -> LiquidationResult:
        """Close an unhealthy position at the current mark.

        The caller earns liquidation_reward_bps of the post-PnL equity
        (never more than the equity, never negative). The rest of the
        equity is reported as remaining_margin for the ledger to settle.

        Raises:
            Unauthorized: If caller is not a liquidator.
            MarketPaused: If the market is paused or the breaker is tripped.
            PositionHealthy: If the position meets maintenance margin.
            StalePrice: If the oracle has no fresh price.
        """
        self._access.require(caller, Role.LIQUIDATOR)
        if self.is_paused:
            raise MarketPaused(f"market {self.market_id} is paused")

        health = self.position_health(owner, now)
        if health.healthy:
            raise PositionHealthy(
                f"{owner}: health factor {health.health_factor_bps} bps, "
                f"equity {health.equity} >= maintenance {health.maintenance_required}"
            )

        position = self._positions[owner]
        pnl = unrealized_pnl(position.size, position.avg_entry_price, health.mark_price)
        reward = mul_div(health.equity, self._risk_settings.liquidation_reward_bps, BPS)
        result = LiquidationResult(
            owner=owner,
            liquidator=caller,
            size=position.size,
            mark_price=health.mark_price,
            pnl=pnl,
            equity=health.equity,
            reward=reward,
            remaining_margin=health.equity - reward,
            timestamp=now,
        )

        self._remove_open_interest(position.size)
        del self._positions[owner]

        logger.warning(
            "position_liquidated",
            owner=owner,
            liquidator=caller,
            size=result.size,
            mark_price=result.mark_price,
            pnl=pnl,
            reward=reward,
        )
        return result

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    async def update_funding_rate(self, caller: str, now: int) -> int:
        """Recompute the funding rate from open-interest skew and publish it.

        Rate-limited to one update per funding interval.

        Raises:
            Unauthorized: If caller is not a keeper.
            TooSoon: Inside the funding interval.
            LedgerWriteFailed: If the ledger push fails (rate is kept in-core).
        """
        self._access.require(caller, Role.KEEPER)
        async with self._lock:
            interval = self._funding_settings.interval_seconds
            last = self._last_funding_update
            if last is not None and now - last < interval:
                raise TooSoon(f"funding updated {now - last}s ago, interval is {interval}s")

            rate = compute_funding_rate(
                self._long_open_interest,
                self._short_open_interest,
                self._funding_settings.base_rate_bps,
                self._funding_settings.max_rate_bps,
            )
            self._config.funding_rate_bps = rate
            self._last_funding_update = now

            logger.info(
                "funding_rate_updated",
                rate_bps=rate,
                long_open_interest=self._long_open_interest,
                short_open_interest=self._short_open_interest,
            )
            await self._writer.apply_funding_rate(self.market_id, rate)
            return rate

    # ------------------------------------------------------------------
    # Tiers and earnings mode
    # ------------------------------------------------------------------

    async def set_earnings_mode(self, caller: str, enabled: bool) -> None:
        """Halve leverage and double initial margin on every tier, or restore baseline."""
        self._access.require(caller, Role.KEEPER)
        async with self._lock:
            active = earnings_tiers(self._baseline_tiers) if enabled else self._baseline_tiers

            self._active_tiers = active
            self._config.is_earnings_mode = enabled
            logger.info("earnings_mode_set", enabled=enabled)

            await self._publish([*self._tier_facts(), self._config_fact()])

    async def update_leverage_tiers(self, caller: str, new_tiers: Sequence[LeverageTier]) -> None:
        """Replace the baseline tier table wholesale.

        Raises:
            Unauthorized: If caller is not the admin.
            InvalidTier: If the new table is invalid; nothing changes.
        """
        self._access.require(caller, Role.ADMIN)
        async with self._lock:
            baseline = TierTable(new_tiers)
            active = earnings_tiers(baseline) if self._config.is_earnings_mode else baseline

            self._baseline_tiers = baseline
            self._active_tiers = active
            logger.info("leverage_tiers_updated", tiers=len(baseline))

            await self._publish(self._tier_facts())

    def _tier_facts(self) -> list[Callable[[], Awaitable[None]]]:
        headline = self._active_tiers.headline
        return [
            partial(self._writer.apply_leverage, self.market_id, headline.max_leverage_bps),
            partial(
                self._writer.apply_margin_requirements,
                self.market_id,
                headline.initial_margin_bps,
                headline.maintenance_margin_bps,
            ),
        ]

    def _config_fact(self) -> Callable[[], Awaitable[None]]:
        return partial(self._writer.apply_config, self.market_id, self.config)

    async def _publish(self, pushes: Sequence[Callable[[], Awaitable[None]]]) -> None:
        """Push facts in order, queueing every one even after a failed push.

        Raises:
            LedgerWriteFailed: The first failure, once all facts are queued.
        """
        failure: LedgerWriteFailed | None = None
        for push in pushes:
            try:
                await push()
            except LedgerWriteFailed as exc:
                if failure is None:
                    failure = exc
        if failure is not None:
            raise failure

    # ------------------------------------------------------------------
    # Market configuration and pause control
    # ------------------------------------------------------------------

    async def update_market_config(
        self,
        caller: str,
        *,
        max_position_size: int | None = None,
        min_order_size: int | None = None,
        maker_fee_bps: int | None = None,
        taker_fee_bps: int | None = None,
    ) -> MarketConfig:
        """Change position limits or fees and publish the new config."""
        self._access.require(caller, Role.ADMIN)
        async with self._lock:
            updated = replace(
                self._config,
                max_position_size=(
                    self._config.max_position_size if max_position_size is None else max_position_size
                ),
                min_order_size=(
                    self._config.min_order_size if min_order_size is None else min_order_size
                ),
                maker_fee_bps=self._config.maker_fee_bps if maker_fee_bps is None else maker_fee_bps,
                taker_fee_bps=self._config.taker_fee_bps if taker_fee_bps is None else taker_fee_bps,
            )
            if updated.min_order_size <= 0 or updated.max_position_size < updated.min_order_size:
                raise ValueError("require 0 < min_order_size <= max_position_size")
            if not 0 <= updated.taker_fee_bps <= BPS:
                raise ValueError(f"taker fee out of range: {updated.taker_fee_bps}")
            if not -updated.taker_fee_bps <= updated.maker_fee_bps <= BPS:
                raise ValueError(f"maker fee out of range: {updated.maker_fee_bps}")

            self._config = updated
            logger.info(
                "market_config_updated",
                max_position_size=updated.max_position_size,
                min_order_size=updated.min_order_size,
                maker_fee_bps=updated.maker_fee_bps,
                taker_fee_bps=updated.taker_fee_bps,
            )
            await self._writer.apply_config(self.market_id, self.config)
            return self.config

    async def publish_state(self) -> None:
        """Push the current config and headline tier limits to the ledger."""
        async with self._lock:
            await self._publish([self._config_fact(), *self._tier_facts()])

    async def pause_market(self, caller: str) -> None:
        """Halt trading and liquidations, and publish the pause."""
        self._access.require(caller, Role.ADMIN, Role.KEEPER)
        async with self._lock:
            self._config.is_paused = True
            logger.warning("market_paused", caller=caller)
            await self._writer.apply_pause(self.market_id)

    async def resume_market(self, caller: str) -> None:
        """Re-enable trading and publish the resume.

        Raises:
            CircuitBreakerActive: While the oracle circuit breaker is tripped.
        """
        self._access.require(caller, Role.ADMIN, Role.KEEPER)
        async with self._lock:
            if self._oracle.circuit_breaker_active:
                raise CircuitBreakerActive("cannot resume while the circuit breaker is active")
            self._config.is_paused = False
            logger.info("market_resumed", caller=caller)
            await self._writer.apply_resume(self.market_id)

    # ------------------------------------------------------------------
    # Internal bookkeeping
    # ------------------------------------------------------------------

    def _store(self, position: Position) -> None:
        if position.size == 0 and position.margin == 0:
            self._positions.pop(position.owner, None)
        else:
            self._positions[position.owner] = position

    def _add_open_interest(self, size: int) -> None:
        if size > 0:
            self._long_open_interest += size
        elif size < 0:
            self._short_open_interest += -size

    def _remove_open_interest(self, size: int) -> None:
        if size > 0:
            self._long_open_interest -= size
        elif size < 0:
            self._short_open_interest -= -size
