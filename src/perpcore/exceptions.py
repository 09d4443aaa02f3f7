"""Typed errors raised by the oracle, risk and administrative components.

Every failure a caller can observe is one of these. None of them leave
in-core state half-written, with the single exception of
LedgerWriteFailed, which is raised after the in-core change so callers
can retry the external push without re-deriving the decision.
"""

from __future__ import annotations

from typing import Any


class PerpCoreError(Exception):
    """Base exception for all perpcore errors."""


class StalePrice(PerpCoreError):
    """Raised when a price is older than allowed or not newer than the last stored one."""


class InvalidPrice(PerpCoreError):
    """Raised when a price or TWAP input is not strictly positive."""


class InvalidAttestation(PerpCoreError):
    """Raised when a price attestation is malformed or its signature does not verify."""


class InsufficientFee(PerpCoreError):
    """Raised when the fee paid for a price update is below the quoted fee."""


class InsufficientHistory(PerpCoreError):
    """Raised when no stored price falls inside the requested TWAP window."""


class CircuitBreakerActive(PerpCoreError):
    """Raised when an operation is refused because the circuit breaker is tripped."""


class CircuitBreakerNotActive(PerpCoreError):
    """Raised when resetting a circuit breaker that is not tripped."""


class CoolDownNotElapsed(PerpCoreError):
    """Raised when resetting the circuit breaker before its cool-down has passed."""


class Unauthorized(PerpCoreError):
    """Raised when the caller lacks the role required by an operation."""


class MarketPaused(PerpCoreError):
    """Raised when a trading or liquidation operation hits a paused market."""


class PositionHealthy(PerpCoreError):
    """Raised when liquidating a position that still meets maintenance margin."""


class InvalidTier(PerpCoreError):
    """Raised when a leverage tier table violates its invariants."""


class TooSoon(PerpCoreError):
    """Raised when a rate-limited operation is called inside its interval."""


class InsufficientMargin(PerpCoreError):
    """Raised when a fill or withdrawal would leave a position below initial margin."""


class PositionLimitExceeded(PerpCoreError):
    """Raised when a fill would push a position past the market's size limit."""


class LedgerWriteFailed(PerpCoreError):
    """Raised when the settlement ledger rejects or fails an administrative fact.

    The fact is kept in the writer's pending queue; ``AdministrativeWriter.retry_pending``
    re-sends it.
    """

    def __init__(self, action: str, payload: Any, message: str) -> None:
        super().__init__(message)
        self.action = action
        self.payload = payload
