"""Structured logging setup shared by the CLI and library callers."""
import logging

import structlog

from docqa import config


def configure_logging(level: str = None) -> None:
    """Configure structlog to emit JSON lines through the stdlib logger.

    Args:
        level: Log level name (default from config)
    """
    level = (level or config.LOG_LEVEL).upper()

    logging.basicConfig(format="%(message)s", level=getattr(logging, level, logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
