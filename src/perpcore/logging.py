"""structlog setup for perpcore.

Every component logs through ``get_logger(__name__)`` with an event name
and keyword context. ``build_market`` binds ``market_id`` so lines from
the oracle, risk manager and writer can be told apart per market.
"""

import logging
import os

import structlog
from structlog.types import EventDict, Processor, WrappedLogger


def _hex_bytes(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Render raw bytes (feed ids, config blobs) as 0x-prefixed hex."""
    for key, value in event_dict.items():
        if isinstance(value, bytes):
            event_dict[key] = "0x" + value.hex()
    return event_dict


def setup_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    """Route structlog and stdlib logging through one renderer.

    Args:
        log_level: Root level name, e.g. "DEBUG".
        log_format: "json" or "console". Falls back to the LOG_FORMAT
            environment variable, then to "console".
    """
    log_format = (log_format or os.environ.get("LOG_FORMAT", "console")).lower()

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _hex_bytes,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_market(market_id: str) -> None:
    """Tag every log line in the current context with market_id."""
    structlog.contextvars.bind_contextvars(market_id=market_id)


def unbind_market() -> None:
    structlog.contextvars.unbind_contextvars("market_id")
