"""Administrative writer: the only channel from this core to the ledger.

Facts are relayed strictly in the order they are applied. A fact that the
ledger fails to accept stays queued, and every later fact queues behind
it, so the ledger never observes a newer decision before an older one.
Callers get LedgerWriteFailed and can call retry_pending() without
re-deriving the decision.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any

from perpcore.admin.ledger import LedgerClient
from perpcore.exceptions import LedgerWriteFailed
from perpcore.logging import get_logger
from perpcore.models import MarketConfig

logger = get_logger(__name__)

_MISSING = object()


def encode_market_config(config: MarketConfig) -> bytes:
    """Canonical byte encoding of a MarketConfig (sorted-key compact JSON)."""
    return json.dumps(asdict(config), sort_keys=True, separators=(",", ":")).encode()


@dataclass(frozen=True)
class _Fact:
    key: str  # idempotency key: facts with the same key supersede each other
    value: Any
    action: str  # LedgerClient method name
    args: tuple


class AdministrativeWriter:
    """Idempotent, ordered relay of administrative facts to the ledger.

    A fact whose value equals the last applied value for its key is not
    re-sent (pausing a paused market is a no-op). A new fact replaces any
    pending fact with the same key and queues behind the rest, so at most
    one fact per key is ever pending.

    Args:
        ledger: Settlement ledger client.
        market_id: The single market this writer serves.
    """

    def __init__(self, ledger: LedgerClient, market_id: str) -> None:
        self._ledger = ledger
        self._market_id = market_id
        self._applied: dict[str, Any] = {}
        self._pending: list[_Fact] = []

    @property
    def market_id(self) -> str:
        return self._market_id

    @property
    def applied(self) -> dict[str, Any]:
        """Last value the ledger acknowledged, per fact key."""
        return dict(self._applied)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def apply_pause(self, market_id: str) -> None:
        await self._push(market_id, _Fact("paused", True, "pause_market", ()))

    async def apply_resume(self, market_id: str) -> None:
        await self._push(market_id, _Fact("paused", False, "resume_market", ()))

    async def apply_config(self, market_id: str, config: MarketConfig) -> None:
        encoded = encode_market_config(config)
        await self._push(market_id, _Fact("config", encoded, "update_market_config", (encoded,)))

    async def apply_funding_rate(self, market_id: str, rate_bps: int) -> None:
        await self._push(market_id, _Fact("funding_rate", rate_bps, "set_funding_rate", (rate_bps,)))

    async def apply_leverage(self, market_id: str, leverage_bps: int) -> None:
        if leverage_bps <= 0:
            raise ValueError(f"leverage must be positive: {leverage_bps}")
        await self._push(
            market_id, _Fact("max_leverage", leverage_bps, "set_max_leverage", (leverage_bps,))
        )

    async def apply_margin_requirements(
        self, market_id: str, initial_bps: int, maintenance_bps: int
    ) -> None:
        if maintenance_bps > initial_bps:
            raise ValueError("maintenance margin cannot exceed initial margin")
        await self._push(
            market_id,
            _Fact(
                "margin_requirements",
                (initial_bps, maintenance_bps),
                "update_margin_requirements",
                (initial_bps, maintenance_bps),
            ),
        )

    async def retry_pending(self) -> int:
        """Re-send queued facts in order.

        Returns:
            Number of facts delivered.

        Raises:
            LedgerWriteFailed: If the ledger fails again; undelivered facts stay queued.
        """
        return await self._flush()

    async def _push(self, market_id: str, fact: _Fact) -> None:
        if market_id != self._market_id:
            raise ValueError(f"writer serves {self._market_id}, not {market_id}")

        superseded = [p for p in self._pending if p.key == fact.key]
        if superseded:
            self._pending = [p for p in self._pending if p.key != fact.key]
            logger.info("ledger_fact_superseded", key=fact.key, dropped=len(superseded))

        if self._applied.get(fact.key, _MISSING) == fact.value:
            logger.debug("ledger_fact_unchanged", key=fact.key)
        else:
            self._pending.append(fact)

        if self._pending:
            await self._flush()

    async def _flush(self) -> int:
        delivered = 0
        while self._pending:
            fact = self._pending[0]
            try:
                await getattr(self._ledger, fact.action)(self._market_id, *fact.args)
            except Exception as exc:
                logger.error(
                    "ledger_write_failed",
                    action=fact.action,
                    pending=len(self._pending),
                    error=str(exc),
                )
                raise LedgerWriteFailed(
                    fact.action, fact.value, f"ledger rejected {fact.action}: {exc}"
                ) from exc

            self._pending.pop(0)
            self._applied[fact.key] = fact.value
            delivered += 1
            logger.info("ledger_fact_applied", action=fact.action, key=fact.key)
        return delivered

