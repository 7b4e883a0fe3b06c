from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path

_LOGGING_CONFIGURED = False
_LOG_TARGET: str | None = None


def _handlers_for(filename: str | Path | None) -> list[logging.Handler]:
    if filename:
        return [logging.FileHandler(str(filename), encoding="utf-8")]
    return [logging.StreamHandler(sys.stderr)]


def setup_logging(filename: str | Path | None = None) -> structlog.BoundLogger:
    """Set up structured logging for the flatten_tree module.

    The structlog pipeline is configured once. Calling again with a different
    ``filename`` only re-targets the stdlib handler (used by ``--log-file``),
    so loggers bound at import time keep working.

    Args:
        filename: Optional path to a log file. If None, logs are written to stderr.

    Returns:
        A structlog logger instance configured for the flatten_tree module.
    """
    global _LOGGING_CONFIGURED, _LOG_TARGET  # noqa: PLW0603
    target = str(filename) if filename else None
    if not _LOGGING_CONFIGURED:
        logging.basicConfig(
            level=logging.INFO,
            handlers=_handlers_for(filename),
            format="%(message)s",
        )
        structlog.configure(
            processors=[
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_CONFIGURED = True
        _LOG_TARGET = target
    elif target and target != _LOG_TARGET:
        logging.basicConfig(
            level=logging.INFO,
            handlers=_handlers_for(filename),
            format="%(message)s",
            force=True,
        )
        _LOG_TARGET = target

    return structlog.get_logger("flatten_tree")


logger = setup_logging()
