"""Structured logging configuration for quarry."""

from __future__ import annotations

import logging

import structlog

_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(level: int | str = logging.INFO, fmt: str = "console") -> None:
    """Configure structlog for quarry.

    At DEBUG level every batch and file is logged; at INFO only job and
    ingest lifecycle events are.

    Args:
        level: Standard logging level, either an int (``logging.DEBUG``) or a
            name (``"debug"``). Unknown names fall back to INFO.
        fmt: ``"console"`` for human-readable output, ``"json"`` for one JSON
            object per line.
    """
    if isinstance(level, str):
        level = _LEVELS.get(level.lower(), logging.INFO)

    renderer: structlog.types.Processor
    if fmt == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """Get a named structlog logger."""
    return structlog.get_logger(name)
