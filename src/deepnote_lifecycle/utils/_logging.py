"""Logging utilities.

This module provides standalone structlog logger factories that write
JSON-formatted or text-formatted logs to a file or to stderr. Each logger is
self-contained and does not modify global structlog configuration.
"""

from __future__ import annotations

import logging
import sys
from os import getenv
from pathlib import Path
from typing import TYPE_CHECKING, Literal, cast

import structlog

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from deepnote_lifecycle.config import LoggingConfig

LogFormatType = Literal["json", "text"]

DEBUG_ENV_VAR = "DEEPNOTE_LIFECYCLE_DEBUG"
LOG_LEVEL_ENV_VAR = "DEEPNOTE_LIFECYCLE_LOG_LEVEL"


def _log_level_from_string(level: str | None) -> int:
    """Convert a log level string to a logging level integer.

    The debug environment variable forces DEBUG; otherwise the level
    environment variable overrides ``level``. Unknown names fall back to INFO.
    """
    if getenv(DEBUG_ENV_VAR, None):
        return logging.DEBUG

    effective = getenv(LOG_LEVEL_ENV_VAR, None) or level or "info"
    return logging.getLevelNamesMapping().get(effective.upper(), logging.INFO)


def create_lifecycle_logger(
    *,
    level: str | None = None,
    log_format: LogFormatType = "json",
    log_file: str = "",
    component: str = "",
) -> FilteringBoundLogger:
    """Create a standalone logger for lifecycle components.

    Args:
        level: Log level threshold (debug, info, warning, error).
        log_format: Output format, either "json" or "text".
        log_file: Path to a log file opened in append mode. Empty logs to stderr.
        component: Component name bound to every entry when given.

    Returns:
        A configured FilteringBoundLogger instance.
    """
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger_factory = structlog.WriteLoggerFactory(file=log_path.open("a"))
    else:
        logger_factory = structlog.PrintLoggerFactory(file=sys.stderr)

    processors: list[structlog.typing.Processor] = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if log_format == "json":
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    logger = cast(
        "FilteringBoundLogger",
        structlog.wrap_logger(
            logger_factory(),
            processors=processors,
            wrapper_class=structlog.make_filtering_bound_logger(
                _log_level_from_string(level)
            ),
            context_class=dict,
        ),
    )

    if component:
        return logger.bind(component=component)
    return logger


def create_logger_from_config(
    config: LoggingConfig,
    *,
    component: str = "",
) -> FilteringBoundLogger:
    """Create a lifecycle logger from the logging configuration section."""
    return create_lifecycle_logger(
        level=config.level.value,
        log_format=cast("LogFormatType", config.format.value),
        log_file=config.file,
        component=component,
    )
