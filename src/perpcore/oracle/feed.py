"""Price feed source interface and the signed attestation codec.

The adapter never trusts raw bytes itself: it asks a PriceFeedSource to
verify and decode a batch, validates the entry for the market's feed id,
and only then has the source store it.

Attestation wire layout (big-endian, 92 bytes):
    feed_id       32 bytes
    price         int64
    conf          uint64
    expo          int32
    publish_time  uint64
    tag           32 bytes, HMAC-SHA256 over the preceding 60 bytes
"""

from __future__ import annotations

import hashlib
import hmac
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass

from perpcore.access import AccessControl, Role
from perpcore.exceptions import InsufficientFee, InvalidAttestation, StalePrice
from perpcore.logging import get_logger

logger = get_logger(__name__)

FEED_ID_LENGTH = 32

_BODY = struct.Struct(">32sqQiQ")
_TAG_LENGTH = 32
ATTESTATION_LENGTH = _BODY.size + _TAG_LENGTH


def feed_id_from_hex(value: str) -> bytes:
    """Parse a 0x-prefixed (or bare) 64-char hex string into a 32-byte feed id."""
    raw = bytes.fromhex(value.removeprefix("0x"))
    if len(raw) != FEED_ID_LENGTH:
        raise ValueError(f"feed id must be {FEED_ID_LENGTH} bytes, got {len(raw)}")
    return raw


@dataclass(frozen=True)
class RawPrice:
    """A stored attestation value before normalization."""

    price: int
    conf: int
    expo: int
    publish_time: int


def encode_attestation(
    key: bytes,
    feed_id: bytes,
    price: int,
    conf: int,
    expo: int,
    publish_time: int,
) -> bytes:
    """Serialize and sign one attestation."""
    if len(feed_id) != FEED_ID_LENGTH:
        raise ValueError(f"feed id must be {FEED_ID_LENGTH} bytes")
    body = _BODY.pack(feed_id, price, conf, expo, publish_time)
    return body + hmac.new(key, body, hashlib.sha256).digest()


def decode_attestation(key: bytes, payload: bytes) -> tuple[bytes, RawPrice]:
    """Verify and decode one attestation.

    Raises:
        InvalidAttestation: On wrong length or a tag that does not verify.
    """
    if len(payload) != ATTESTATION_LENGTH:
        raise InvalidAttestation(
            f"attestation must be {ATTESTATION_LENGTH} bytes, got {len(payload)}"
        )
    body, tag = payload[: _BODY.size], payload[_BODY.size :]
    expected = hmac.new(key, body, hashlib.sha256).digest()
    if not hmac.compare_digest(tag, expected):
        raise InvalidAttestation("attestation signature does not verify")
    feed_id, price, conf, expo, publish_time = _BODY.unpack(body)
    return feed_id, RawPrice(price=price, conf=conf, expo=expo, publish_time=publish_time)


class PriceFeedSource(ABC):
    """Abstract verifier/store for attested price batches."""

    @abstractmethod
    def get_update_fee(self, batch: list[bytes]) -> int:
        """Return the fee required to apply batch."""
        ...

    @abstractmethod
    def parse_price_feed_updates(self, batch: list[bytes]) -> dict[bytes, RawPrice]:
        """Verify every attestation in batch and return the newest value per feed.

        Nothing is stored.
        """
        ...

    @abstractmethod
    def update_price_feeds(self, batch: list[bytes], paid_fee: int) -> None:
        """Verify every attestation in batch and store the newest value per feed."""
        ...

    @abstractmethod
    def get_price_unsafe(self, feed_id: bytes) -> RawPrice:
        """Return the stored value for feed_id without any freshness check."""
        ...


class AttestedPriceFeed(PriceFeedSource):
    """In-process attestation verifier keyed by a shared signing secret.

    A batch is all-or-nothing: every entry is verified before any is stored.
    An attestation older than the stored one for the same feed is ignored.

    Args:
        key: HMAC secret shared with the attestation relay.
        fee_per_update: Fee charged per attestation in a batch.
    """

    def __init__(self, key: bytes, fee_per_update: int = 1) -> None:
        if not key:
            raise ValueError("attestation key must be non-empty")
        if fee_per_update < 0:
            raise ValueError("fee_per_update must be non-negative")
        self._key = key
        self._fee_per_update = fee_per_update
        self._prices: dict[bytes, RawPrice] = {}

    def get_update_fee(self, batch: list[bytes]) -> int:
        return self._fee_per_update * len(batch)

    def parse_price_feed_updates(self, batch: list[bytes]) -> dict[bytes, RawPrice]:
        parsed: dict[bytes, RawPrice] = {}
        for payload in batch:
            feed_id, raw = decode_attestation(self._key, payload)
            current = parsed.get(feed_id)
            if current is None or raw.publish_time > current.publish_time:
                parsed[feed_id] = raw
        return parsed

    def update_price_feeds(self, batch: list[bytes], paid_fee: int) -> None:
        required = self.get_update_fee(batch)
        if paid_fee < required:
            raise InsufficientFee(f"paid {paid_fee}, required {required}")

        parsed = self.parse_price_feed_updates(batch)

        for feed_id, raw in parsed.items():
            current = self._prices.get(feed_id)
            if current is not None and raw.publish_time <= current.publish_time:
                continue
            self._prices[feed_id] = raw

        logger.debug("price_feeds_updated", updates=len(batch), feeds=len(parsed))

    def get_price_unsafe(self, feed_id: bytes) -> RawPrice:
        raw = self._prices.get(feed_id)
        if raw is None:
            raise StalePrice(f"no attested price for feed 0x{feed_id.hex()}")
        return raw


class FeedRegistry:
    """One-to-one mapping between feed ids and tracked symbols.

    Registration is restricted to the admin role.
    """

    def __init__(self, access: AccessControl) -> None:
        self._access = access
        self._symbols: dict[bytes, str] = {}
        self._feeds: dict[str, bytes] = {}

    def register(self, caller: str, feed_id: bytes, symbol: str) -> None:
        self._access.require(caller, Role.ADMIN)
        if len(feed_id) != FEED_ID_LENGTH:
            raise ValueError(f"feed id must be {FEED_ID_LENGTH} bytes")
        if not symbol:
            raise ValueError("symbol must be non-empty")
        if feed_id in self._symbols:
            raise ValueError(f"feed 0x{feed_id.hex()} already registered")
        if symbol in self._feeds:
            raise ValueError(f"symbol {symbol} already registered")

        self._symbols[feed_id] = symbol
        self._feeds[symbol] = feed_id
        logger.info("feed_registered", feed_id=f"0x{feed_id.hex()}", symbol=symbol)

    def is_registered(self, feed_id: bytes) -> bool:
        return feed_id in self._symbols

    def symbol_for(self, feed_id: bytes) -> str:
        """Return the symbol for feed_id. Raises KeyError if unknown."""
        return self._symbols[feed_id]

    def feed_for(self, symbol: str) -> bytes:
        """Return the feed id for symbol. Raises KeyError if unknown."""
        return self._feeds[symbol]
