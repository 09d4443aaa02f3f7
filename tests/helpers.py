"""Identities and payload builders shared by the test modules."""

from decimal import Decimal

from perpcore.oracle.feed import encode_attestation, feed_id_from_hex

ADMIN = "0xadmin"
KEEPER = "0xkeeper"
LIQUIDATOR = "0xliquidator"
OUTSIDER = "0xoutsider"

ATTESTATION_KEY = b"test-attestation-key"
FEED_HEX = "0x" + "ab" * 32
FEED_ID = feed_id_from_hex(FEED_HEX)


def attest(
    price: str,
    publish_time: int,
    expo: int = -8,
    conf: str = "0.05",
    feed_id: bytes = FEED_ID,
    key: bytes = ATTESTATION_KEY,
) -> list[bytes]:
    """Build a one-attestation batch for the test feed.

    attest("100.00", 1_000) -> [payload] with expo -8 and a 0.05 confidence.
    """
    scale = Decimal(10) ** -expo
    return [
        encode_attestation(
            key,
            feed_id,
            int(Decimal(price) * scale),
            int(Decimal(conf) * scale),
            expo,
            publish_time,
        )
    ]
