"""Structured logging configuration.

renote writes the rendered release note to stdout, so every log line goes to
stderr. Two renderings are supported:
- console: pretty, colorized output for interactive use
- json: one JSON object per line, for CI pipelines that collect logs

Structured events keep the triage output machine-readable:
  {"event": "unclassified_item", "item": 1234, "labels": ["question"]}

Usage:
    from renote.logging_config import setup_logging, get_logger

    setup_logging(log_format="json")
    logger = get_logger(__name__)
    logger.info("fetch_complete", repo="longhorn/longhorn", items=42)
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog


def _stderr_logger(*args: Any) -> structlog.PrintLogger:
    # Resolved per call so a replaced sys.stderr (pytest capture) is honored.
    return structlog.PrintLogger(file=sys.stderr)


def setup_logging(
    log_format: str | None = None,
    log_level: str | None = None,
) -> None:
    """Configure structured logging for a CLI run.

    Args:
        log_format: "console" or "json". Reads from RENOTE_LOG_FORMAT env
                    var if not provided.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
                   Reads from LOG_LEVEL env var if not provided.
    """
    fmt = log_format or os.environ.get("RENOTE_LOG_FORMAT", "console")
    level = log_level or os.environ.get("LOG_LEVEL", "INFO")

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if fmt == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )

    # httpx logs every request at INFO through the standard library.
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper()),
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> Any:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        A structlog bound logger
    """
    return structlog.get_logger(name)
