"""Price oracle layer -- attested feed ingestion, history, TWAP and circuit breaking."""

from perpcore.oracle.adapter import OracleAdapter, OracleState, compute_deviation_bps
from perpcore.oracle.feed import (
    AttestedPriceFeed,
    FeedRegistry,
    PriceFeedSource,
    RawPrice,
    decode_attestation,
    encode_attestation,
    feed_id_from_hex,
)
from perpcore.oracle.history import PriceHistory

__all__ = [
    "AttestedPriceFeed",
    "FeedRegistry",
    "OracleAdapter",
    "OracleState",
    "PriceFeedSource",
    "PriceHistory",
    "RawPrice",
    "compute_deviation_bps",
    "decode_attestation",
    "encode_attestation",
    "feed_id_from_hex",
]
