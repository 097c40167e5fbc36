"""Central logging configuration for arbor.

Call :func:`setup_logging` once at CLI start-up. Log output goes to stderr
so it never interleaves with the rendered outline on stdout.
"""

from __future__ import annotations

import logging
import sys

import structlog

__all__ = ["setup_logging"]


def setup_logging(level: str = "WARNING") -> None:
    """Configure structlog with a level filter writing to stderr.

    Unknown level names fall back to WARNING.
    """
    numeric = logging.getLevelName(level.upper()) if level else logging.WARNING
    if not isinstance(numeric, int):
        numeric = logging.WARNING

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
