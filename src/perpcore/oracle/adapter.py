"""Price oracle adapter: ingest, validation, smoothing and circuit breaking.

Produces one trustworthy current price and a TWAP for the market, and
guards against stale or manipulated feeds.

Circuit breaker states:
    Normal   -> Breached   operator trigger, or ingest on extreme or
                           sustained deviation
    Breached -> Normal     admin reset after the cool-down

While breached, ingest is refused outright. The adapter does not pause
the market itself; it reports the trip in IngestResult and the
orchestrator pauses the risk manager.
"""

from __future__ import annotations

from dataclasses import dataclass

from perpcore.access import AccessControl, Role
from perpcore.config import OracleSettings
from perpcore.exceptions import (
    CircuitBreakerActive,
    CircuitBreakerNotActive,
    CoolDownNotElapsed,
    InsufficientFee,
    InsufficientHistory,
    InvalidPrice,
    StalePrice,
)
from perpcore.fixedpoint import BPS, mul_div, normalize_price
from perpcore.logging import get_logger
from perpcore.models import IngestResult, PricePoint, PriceReading
from perpcore.oracle.feed import PriceFeedSource, RawPrice
from perpcore.oracle.history import PriceHistory

logger = get_logger(__name__)


def compute_deviation_bps(spot: int, twap_price: int) -> int:
    """Return |spot - twap_price| * 10000 / twap_price.

    Raises:
        InvalidPrice: If either input is not strictly positive.
    """
    if spot <= 0 or twap_price <= 0:
        raise InvalidPrice(f"deviation inputs must be positive: spot={spot}, twap={twap_price}")
    return mul_div(abs(spot - twap_price), BPS, twap_price)


@dataclass
class OracleState:
    """Mutable oracle state, owned by a single OracleAdapter."""

    history: PriceHistory
    circuit_breaker_active: bool = False
    circuit_breaker_activated_at: int | None = None
    circuit_breaker_reason: str = ""
    last_ingest_deviated: bool = False


class OracleAdapter:
    """Oracle adapter for a single market feed.

    Args:
        feed_id: 32-byte id of the market's price feed.
        price_feed: Verifier/store that applies attested batches.
        access: Role guard shared with the rest of the market.
        settings: Oracle thresholds (freshness, deviation, TWAP, cool-down).
    """

    def __init__(
        self,
        feed_id: bytes,
        price_feed: PriceFeedSource,
        access: AccessControl,
        settings: OracleSettings | None = None,
    ) -> None:
        self._feed_id = feed_id
        self._price_feed = price_feed
        self._access = access
        self._settings = settings or OracleSettings()
        self._state = OracleState(history=PriceHistory(self._settings.history_capacity))

    @property
    def feed_id(self) -> bytes:
        return self._feed_id

    @property
    def history(self) -> PriceHistory:
        return self._state.history

    @property
    def circuit_breaker_active(self) -> bool:
        return self._state.circuit_breaker_active

    @property
    def circuit_breaker_activated_at(self) -> int | None:
        return self._state.circuit_breaker_activated_at

    @property
    def deviation_threshold_bps(self) -> int:
        return self._settings.deviation_threshold_bps

    def quote_update_fee(self, batch: list[bytes]) -> int:
        """Return the fee a caller must pay to ingest batch."""
        return self._price_feed.get_update_fee(batch)

    def ingest(
        self,
        caller: str,
        batch: list[bytes],
        paid_fee: int,
        now: int,
    ) -> IngestResult:
        """Apply an attested batch and record the market's new price.

        The new point is compared with the TWAP of previously stored points.
        Above the deviation threshold it raises a deviation signal; above
        twice the threshold, or on a second deviated ingest in a row when
        trip_on_sustained_deviation is set, the circuit breaker trips. The
        point is recorded either way. A rejected batch leaves the feed
        store and the history untouched.

        Args:
            caller: Identity of the keeper submitting the batch.
            batch: Signed attestation payloads.
            paid_fee: Fee supplied with the batch.
            now: Caller's current unix time.

        Returns:
            IngestResult with the stored point and the deviation outcome.

        Raises:
            Unauthorized: If caller is not a keeper.
            CircuitBreakerActive: While the breaker is tripped.
            InsufficientFee: If paid_fee is below the quoted fee.
            InvalidAttestation: If any payload fails verification.
            InvalidPrice: If the normalized price is not positive.
            StalePrice: If the batch carries no newer price for the feed, the
                point is not newer than the newest stored one, or it is dated
                more than max_future_drift_seconds ahead of ``now``.
        """
        self._access.require(caller, Role.KEEPER)

        if self._state.circuit_breaker_active:
            raise CircuitBreakerActive(
                f"circuit breaker active since {self._state.circuit_breaker_activated_at}: "
                f"{self._state.circuit_breaker_reason}"
            )

        required_fee = self.quote_update_fee(batch)
        if paid_fee < required_fee:
            raise InsufficientFee(f"paid {paid_fee}, required {required_fee}")

        parsed = self._price_feed.parse_price_feed_updates(batch)
        raw = self._effective_price(parsed.get(self._feed_id))

        price = normalize_price(raw.price, raw.expo)
        if price <= 0:
            raise InvalidPrice(f"attested price must be positive, got {price}")
        point = PricePoint(
            price=price,
            confidence=normalize_price(raw.conf, raw.expo),
            observed_at=raw.publish_time,
        )

        newest = self._state.history.latest()
        if newest is not None and point.observed_at <= newest.observed_at:
            raise StalePrice(
                f"price at {point.observed_at} is not newer than {newest.observed_at}"
            )

        drift = self._settings.max_future_drift_seconds
        if point.observed_at > now + drift:
            raise StalePrice(
                f"price at {point.observed_at} is more than {drift}s ahead of {now}"
            )

        # Nothing is stored until the point has passed validation.
        self._price_feed.update_price_feeds(batch, paid_fee)

        reference = self._reference_twap(now)
        if reference is None:
            is_deviated, deviation_bps = False, 0
        else:
            is_deviated, deviation_bps = self.deviation(point.price, reference)

        extreme = deviation_bps > 2 * self._settings.deviation_threshold_bps
        sustained = (
            self._settings.trip_on_sustained_deviation
            and is_deviated
            and self._state.last_ingest_deviated
        )
        tripped = extreme or sustained

        self._state.history.append(point)
        self._state.last_ingest_deviated = is_deviated

        if is_deviated:
            logger.warning(
                "price_deviation_detected",
                price=point.price,
                reference_twap=reference,
                deviation_bps=deviation_bps,
                threshold_bps=self._settings.deviation_threshold_bps,
            )

        if tripped:
            reason = "extreme_deviation" if extreme else "sustained_deviation"
            self._trip(f"{reason}: {deviation_bps} bps", now)

        logger.debug(
            "price_ingested",
            price=point.price,
            confidence=point.confidence,
            observed_at=point.observed_at,
            history_len=len(self._state.history),
        )

        return IngestResult(
            point=point,
            reference_twap=reference,
            deviation_bps=deviation_bps,
            is_deviated=is_deviated,
            circuit_breaker_tripped=tripped,
        )

    def current_price(self, now: int) -> PriceReading:
        """Return the newest stored price.

        Raises:
            StalePrice: If nothing is stored, or the newest point is older
                than max_price_age_seconds or further ahead than
                max_future_drift_seconds at ``now``.
        """
        newest = self._state.history.latest()
        if newest is None:
            raise StalePrice("no price recorded")
        age = now - newest.observed_at
        if age > self._settings.max_price_age_seconds:
            raise StalePrice(
                f"price is {age}s old (max {self._settings.max_price_age_seconds}s)"
            )
        if age < -self._settings.max_future_drift_seconds:
            raise StalePrice(f"price is {-age}s ahead of {now}")
        return PriceReading(
            price=newest.price,
            confidence=newest.confidence,
            timestamp=newest.observed_at,
        )

    def twap(self, window_seconds: int, now: int) -> int:
        """Arithmetic mean of stored prices observed in [now - window, now].

        Every point in the window counts once regardless of spacing. The
        window is capped at max_twap_window_seconds.

        Raises:
            ValueError: If window_seconds is not positive.
            InsufficientHistory: If no point falls in the window.
        """
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive: {window_seconds}")
        window = min(window_seconds, self._settings.max_twap_window_seconds)
        points = self._state.history.points_between(now - window, now)
        if not points:
            raise InsufficientHistory(f"no prices in the last {window}s")
        return sum(p.price for p in points) // len(points)

    def deviation(self, spot: int, twap_price: int) -> tuple[bool, int]:
        """Return (is_deviated, deviation_bps) for spot against twap_price.

        Raises:
            InvalidPrice: If either input is not strictly positive.
        """
        deviation_bps = compute_deviation_bps(spot, twap_price)
        return deviation_bps > self._settings.deviation_threshold_bps, deviation_bps

    def trigger_circuit_breaker(self, caller: str, reason: str, now: int) -> None:
        """Move the breaker from Normal to Breached.

        Raises:
            Unauthorized: If caller is neither admin nor keeper.
            CircuitBreakerActive: If already breached.
        """
        self._access.require(caller, Role.ADMIN, Role.KEEPER)
        if self._state.circuit_breaker_active:
            raise CircuitBreakerActive("circuit breaker already active")
        self._trip(reason, now)

    def reset_circuit_breaker(self, caller: str, now: int) -> None:
        """Move the breaker from Breached back to Normal.

        Raises:
            Unauthorized: If caller is not the admin.
            CircuitBreakerNotActive: If the breaker is not tripped.
            CoolDownNotElapsed: If called before the cool-down has passed.
        """
        self._access.require(caller, Role.ADMIN)
        if not self._state.circuit_breaker_active:
            raise CircuitBreakerNotActive("circuit breaker is not active")

        activated_at = self._state.circuit_breaker_activated_at or 0
        elapsed = now - activated_at
        cooldown = self._settings.circuit_breaker_cooldown_seconds
        if elapsed < cooldown:
            raise CoolDownNotElapsed(f"{elapsed}s since trigger, cool-down is {cooldown}s")

        self._state.circuit_breaker_active = False
        self._state.circuit_breaker_activated_at = None
        self._state.circuit_breaker_reason = ""
        self._state.last_ingest_deviated = False
        logger.info("circuit_breaker_reset", caller=caller, breached_for=elapsed)

    def _trip(self, reason: str, now: int) -> None:
        self._state.circuit_breaker_active = True
        self._state.circuit_breaker_activated_at = now
        self._state.circuit_breaker_reason = reason
        logger.critical("circuit_breaker_triggered", reason=reason, activated_at=now)

    def _effective_price(self, parsed: RawPrice | None) -> RawPrice:
        try:
            stored = self._price_feed.get_price_unsafe(self._feed_id)
        except StalePrice:
            if parsed is None:
                raise
            return parsed
        if parsed is None or parsed.publish_time <= stored.publish_time:
            return stored
        return parsed

    def _reference_twap(self, now: int) -> int | None:
        try:
            return self.twap(self._settings.twap_window_seconds, now)
        except InsufficientHistory:
            return None
