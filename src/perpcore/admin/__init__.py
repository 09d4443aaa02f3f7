"""Administrative layer -- ordered, idempotent relay of decisions to the settlement ledger."""

from perpcore.admin.ledger import LedgerClient, LedgerFact, LedgerUnavailable, PaperLedger
from perpcore.admin.writer import AdministrativeWriter, encode_market_config

__all__ = [
    "AdministrativeWriter",
    "LedgerClient",
    "LedgerFact",
    "LedgerUnavailable",
    "PaperLedger",
    "encode_market_config",
]
