"""structlog setup for the decision engine.

Every line logged inside a decision cycle carries its ``cycle_id`` (bound
through structlog contextvars), and Decimal fields render as exact strings in
both console and JSON output.
"""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal

import structlog

# Chatty third-party loggers, held at WARNING unless the root level is stricter
_QUIET_LOGGERS = ("ccxt", "asyncio")


def render_decimals(
    logger: object, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Replace Decimal values with their exact string form."""
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = str(value)
    return event_dict


def setup_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    """Route structlog through stdlib logging with one stream handler.

    Args:
        log_level: Root level name; unknown names fall back to INFO.
        log_format: "json" or "console"; defaults to the LOG_FORMAT
            environment variable, then "console".
    """
    fmt = (log_format or os.environ.get("LOG_FORMAT", "console")).lower()
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        level = logging.INFO

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            render_decimals,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


@contextmanager
def cycle_context(cycle_id: str) -> Iterator[None]:
    """Tag every log line emitted inside the block with ``cycle_id``."""
    with structlog.contextvars.bound_contextvars(cycle_id=cycle_id):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
