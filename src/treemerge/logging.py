from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path


def setup_logging(filename: str | Path | None = None, *, verbose: bool = False) -> structlog.BoundLogger:
    """Set up structured logging for the treemerge package.

    Calling it again replaces the previous destination and level, so the CLI can
    redirect logs once the settings are known.

    Args:
        filename: Optional path to a log file. If None, logs are written to stderr.
        verbose: Log at DEBUG level instead of INFO.

    Returns:
        A structlog logger instance configured for the treemerge package.
    """
    level = logging.DEBUG if verbose else logging.INFO
    handlers: list[logging.Handler] = []
    if filename:
        handlers.append(logging.FileHandler(str(filename), encoding="utf-8"))
    else:
        handlers.append(logging.StreamHandler(sys.stderr))

    logging.basicConfig(
        level=level,
        handlers=handlers,
        format="%(message)s",
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    return structlog.get_logger("treemerge")


logger = setup_logging()
