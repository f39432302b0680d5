"""Logging configuration for the code generator."""

import logging
import sys
from typing import Optional

import structlog

from fhirgen.config import get_settings


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure structlog to render through the stdlib logging module.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR). Defaults to
            the ``log_level`` setting.
    """
    log_level = (level or get_settings().log_level).upper()
    numeric_level = getattr(logging, log_level, logging.WARNING)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
