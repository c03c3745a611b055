"""Structured logging configuration using structlog.

Components never reach for a process-wide logger: each one takes a handle
from :func:`get_logger` at construction (or is handed one explicitly) and
binds its own context onto it.
"""

from __future__ import annotations

import logging
import sys
from typing import cast

import structlog
from structlog.typing import FilteringBoundLogger, Processor

# Third-party loggers routed through the stdlib that are noisy at INFO.
_QUIET_LOGGERS: tuple[str, ...] = ("kubernetes_asyncio", "aiohttp.access", "uvicorn.access")


def setup_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog for JSON (or console) output to stderr.

    Args:
        level: Minimum log level name, e.g. ``"debug"``.
        fmt: ``"json"`` for machine-readable lines, ``"console"`` for a
             human-friendly renderer when running from a terminal.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    renderer: Processor
    if fmt == "console":
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=log_level, stream=sys.stderr, format="%(name)s %(levelname)s %(message)s")
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def get_logger(component: str) -> FilteringBoundLogger:
    """Get a logger bound with a component name."""
    return cast(FilteringBoundLogger, structlog.get_logger(component=component))
