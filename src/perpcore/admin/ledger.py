"""Settlement ledger interface.

The ledger executes trades and holds collateral; this core only pushes
administrative facts to it. Each call is a one-way fact push: success
means the fact is durable, any exception means it is not.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from perpcore.logging import get_logger

logger = get_logger(__name__)


class LedgerClient(ABC):
    """Abstract base class for settlement ledger clients."""

    @abstractmethod
    async def pause_market(self, market_id: str) -> None:
        """Halt trading on market_id."""
        ...

    @abstractmethod
    async def resume_market(self, market_id: str) -> None:
        """Re-enable trading on market_id."""
        ...

    @abstractmethod
    async def update_market_config(self, market_id: str, config_bytes: bytes) -> None:
        """Replace the market's configuration blob."""
        ...

    @abstractmethod
    async def set_funding_rate(self, market_id: str, rate_bps: int) -> None:
        """Set the per-interval funding rate (signed, positive = longs pay)."""
        ...

    @abstractmethod
    async def set_max_leverage(self, market_id: str, leverage_bps: int) -> None:
        """Set the headline maximum leverage."""
        ...

    @abstractmethod
    async def update_margin_requirements(
        self, market_id: str, initial_bps: int, maintenance_bps: int
    ) -> None:
        """Set the headline initial and maintenance margin requirements."""
        ...


@dataclass
class LedgerFact:
    """A fact received by PaperLedger."""

    action: str
    market_id: str
    args: tuple = field(default_factory=tuple)


class LedgerUnavailable(ConnectionError):
    """Raised by PaperLedger for injected failures."""


class PaperLedger(LedgerClient):
    """In-memory ledger that records every fact it receives.

    Used for paper deployments and tests. ``fail_actions`` lists method
    names that raise LedgerUnavailable until removed from the set.
    """

    def __init__(self, fail_actions: set[str] | None = None) -> None:
        self.facts: list[LedgerFact] = []
        self.fail_actions: set[str] = set(fail_actions or ())

    async def pause_market(self, market_id: str) -> None:
        self._record("pause_market", market_id)

    async def resume_market(self, market_id: str) -> None:
        self._record("resume_market", market_id)

    async def update_market_config(self, market_id: str, config_bytes: bytes) -> None:
        self._record("update_market_config", market_id, config_bytes)

    async def set_funding_rate(self, market_id: str, rate_bps: int) -> None:
        self._record("set_funding_rate", market_id, rate_bps)

    async def set_max_leverage(self, market_id: str, leverage_bps: int) -> None:
        self._record("set_max_leverage", market_id, leverage_bps)

    async def update_margin_requirements(
        self, market_id: str, initial_bps: int, maintenance_bps: int
    ) -> None:
        self._record("update_margin_requirements", market_id, initial_bps, maintenance_bps)

    def actions(self) -> list[str]:
        """Return the recorded action names in arrival order."""
        return [fact.action for fact in self.facts]

    def _record(self, action: str, market_id: str, *args: object) -> None:
        if action in self.fail_actions:
            raise LedgerUnavailable(f"paper ledger rejected {action}")
        self.facts.append(LedgerFact(action=action, market_id=market_id, args=args))
        logger.debug("paper_ledger_fact", action=action, market_id=market_id)
