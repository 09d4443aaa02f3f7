"""Tests for structlog helpers."""

import logging

import pytest
import structlog

from perpcore.logging import _hex_bytes, bind_market, get_logger, setup_logging, unbind_market


class TestHexBytes:
    def test_bytes_rendered_as_hex(self) -> None:
        event = _hex_bytes(None, "info", {"event": "x", "feed_id": b"\xab\x01", "size": 3})
        assert event == {"event": "x", "feed_id": "0xab01", "size": 3}


class TestMarketContext:
    def test_bind_and_unbind(self) -> None:
        bind_market("GME-PERP")
        assert structlog.contextvars.get_contextvars()["market_id"] == "GME-PERP"

        unbind_market()
        assert "market_id" not in structlog.contextvars.get_contextvars()


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.mark.usefixtures("restore_root_logger")
class TestSetupLogging:
    def test_sets_root_level(self) -> None:
        setup_logging("WARNING", log_format="json")
        assert logging.getLogger().level == logging.WARNING
        get_logger("perpcore.test").warning("configured", feed_id=b"\x00")

    def test_unknown_level_falls_back_to_info(self) -> None:
        setup_logging("LOUD")
        assert logging.getLogger().level == logging.INFO
