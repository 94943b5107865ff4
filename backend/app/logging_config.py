"""structlog configuration module."""

import logging
import sys
from typing import TextIO

import structlog

SERVICE_NAME = "workspace-entitlements"

# SDK loggers that log every request at INFO
CHATTY_LIBRARY_LOGGERS = ("httpx", "httpcore", "stripe", "hpack")


def _add_service_name(_logger, _method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _processors(debug: bool) -> list:
    renderer = structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()
    return [
        structlog.contextvars.merge_contextvars,  # user_id, organization_id (from admission)
        _add_service_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        renderer,
    ]


def setup_logging(debug: bool = False, *, stream: TextIO | None = None) -> None:
    """
    Configure structlog for the entitlement service.

    Args:
        debug: Console output at DEBUG level; otherwise JSON at INFO.
        stream: Where log lines go. Defaults to stdout.
    """
    level = logging.DEBUG if debug else logging.INFO
    stream = stream or sys.stdout

    structlog.configure(
        processors=_processors(debug),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(name)s %(levelname)s %(message)s", stream=stream, level=level)
    for name in CHATTY_LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(level if debug else logging.WARNING)
