"""Tests for the attestation codec, AttestedPriceFeed and FeedRegistry."""

import pytest

from helpers import ADMIN, ATTESTATION_KEY, FEED_ID, KEEPER, attest
from perpcore.access import AccessControl, Role
from perpcore.exceptions import InsufficientFee, InvalidAttestation, StalePrice, Unauthorized
from perpcore.oracle.feed import (
    ATTESTATION_LENGTH,
    AttestedPriceFeed,
    FeedRegistry,
    decode_attestation,
    encode_attestation,
    feed_id_from_hex,
)

OTHER_FEED = bytes(range(32))


class TestAttestationCodec:
    def test_decode_returns_signed_fields(self) -> None:
        payload = encode_attestation(ATTESTATION_KEY, FEED_ID, 12_345, 7, -2, 1_000)

        feed_id, raw = decode_attestation(ATTESTATION_KEY, payload)

        assert len(payload) == ATTESTATION_LENGTH
        assert feed_id == FEED_ID
        assert (raw.price, raw.conf, raw.expo, raw.publish_time) == (12_345, 7, -2, 1_000)

    def test_tampered_body_rejected(self) -> None:
        payload = bytearray(encode_attestation(ATTESTATION_KEY, FEED_ID, 12_345, 7, -2, 1_000))
        payload[40] ^= 0xFF
        with pytest.raises(InvalidAttestation):
            decode_attestation(ATTESTATION_KEY, bytes(payload))

    def test_wrong_key_rejected(self) -> None:
        payload = encode_attestation(b"another-key", FEED_ID, 12_345, 7, -2, 1_000)
        with pytest.raises(InvalidAttestation):
            decode_attestation(ATTESTATION_KEY, payload)

    def test_truncated_payload_rejected(self) -> None:
        payload = encode_attestation(ATTESTATION_KEY, FEED_ID, 12_345, 7, -2, 1_000)
        with pytest.raises(InvalidAttestation):
            decode_attestation(ATTESTATION_KEY, payload[:-1])

    def test_feed_id_from_hex(self) -> None:
        assert feed_id_from_hex("0x" + "ab" * 32) == b"\xab" * 32
        assert feed_id_from_hex("cd" * 32) == b"\xcd" * 32
        with pytest.raises(ValueError):
            feed_id_from_hex("0xabcd")


class TestAttestedPriceFeed:
    def test_fee_scales_with_batch_size(self) -> None:
        feed = AttestedPriceFeed(ATTESTATION_KEY, fee_per_update=3)
        batch = attest("100", 1_000) + attest("50", 1_000, feed_id=OTHER_FEED)
        assert feed.get_update_fee(batch) == 6

    def test_underpaid_batch_rejected(self) -> None:
        feed = AttestedPriceFeed(ATTESTATION_KEY, fee_per_update=3)
        with pytest.raises(InsufficientFee):
            feed.update_price_feeds(attest("100", 1_000), 2)
        with pytest.raises(StalePrice):
            feed.get_price_unsafe(FEED_ID)

    def test_stores_verified_price(self) -> None:
        feed = AttestedPriceFeed(ATTESTATION_KEY)
        feed.update_price_feeds(attest("100.00", 1_000), 1)

        raw = feed.get_price_unsafe(FEED_ID)

        assert raw.price == 100 * 10**8
        assert raw.expo == -8
        assert raw.publish_time == 1_000

    def test_batch_is_all_or_nothing(self) -> None:
        feed = AttestedPriceFeed(ATTESTATION_KEY)
        good = attest("100", 1_000)
        bad = attest("50", 1_000, feed_id=OTHER_FEED, key=b"forged")
        with pytest.raises(InvalidAttestation):
            feed.update_price_feeds(good + bad, 2)
        with pytest.raises(StalePrice):
            feed.get_price_unsafe(FEED_ID)

    def test_older_attestation_ignored(self) -> None:
        feed = AttestedPriceFeed(ATTESTATION_KEY)
        feed.update_price_feeds(attest("100", 2_000), 1)
        feed.update_price_feeds(attest("90", 1_000), 1)

        raw = feed.get_price_unsafe(FEED_ID)

        assert raw.publish_time == 2_000
        assert raw.price == 100 * 10**8

    def test_parse_keeps_newest_per_feed_without_storing(self) -> None:
        feed = AttestedPriceFeed(ATTESTATION_KEY)
        batch = attest("101", 1_001) + attest("100", 1_000) + attest("50", 900, feed_id=OTHER_FEED)

        parsed = feed.parse_price_feed_updates(batch)

        assert parsed[FEED_ID].publish_time == 1_001
        assert parsed[FEED_ID].price == 101 * 10**8
        assert parsed[OTHER_FEED].publish_time == 900
        with pytest.raises(StalePrice):
            feed.get_price_unsafe(FEED_ID)

    def test_parse_rejects_forged_entry(self) -> None:
        feed = AttestedPriceFeed(ATTESTATION_KEY)
        with pytest.raises(InvalidAttestation):
            feed.parse_price_feed_updates(attest("100", 1_000, key=b"forged"))

    def test_unknown_feed_raises_stale(self) -> None:
        feed = AttestedPriceFeed(ATTESTATION_KEY)
        with pytest.raises(StalePrice):
            feed.get_price_unsafe(OTHER_FEED)

    def test_empty_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            AttestedPriceFeed(b"")


class TestFeedRegistry:
    @pytest.fixture
    def registry(self) -> FeedRegistry:
        access = AccessControl(ADMIN)
        access.grant(ADMIN, KEEPER, Role.KEEPER)
        return FeedRegistry(access)

    def test_register_and_lookup(self, registry: FeedRegistry) -> None:
        registry.register(ADMIN, FEED_ID, "GME/USD")

        assert registry.is_registered(FEED_ID)
        assert registry.symbol_for(FEED_ID) == "GME/USD"
        assert registry.feed_for("GME/USD") == FEED_ID

    def test_register_requires_admin(self, registry: FeedRegistry) -> None:
        with pytest.raises(Unauthorized):
            registry.register(KEEPER, FEED_ID, "GME/USD")
        assert not registry.is_registered(FEED_ID)

    def test_duplicate_feed_or_symbol_rejected(self, registry: FeedRegistry) -> None:
        registry.register(ADMIN, FEED_ID, "GME/USD")
        with pytest.raises(ValueError):
            registry.register(ADMIN, FEED_ID, "AMC/USD")
        with pytest.raises(ValueError):
            registry.register(ADMIN, OTHER_FEED, "GME/USD")

    def test_bad_feed_id_rejected(self, registry: FeedRegistry) -> None:
        with pytest.raises(ValueError):
            registry.register(ADMIN, b"\x01" * 31, "GME/USD")

    def test_unknown_lookup_raises_key_error(self, registry: FeedRegistry) -> None:
        with pytest.raises(KeyError):
            registry.symbol_for(FEED_ID)
