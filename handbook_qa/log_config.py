"""Structured logging setup shared by the HTTP app and the scripts."""
import logging
import sys

import structlog

from handbook_qa import config


def configure_logging(level: str = None, json_logs: bool = True) -> None:
    """Configure structlog on top of the stdlib logging module.

    Args:
        level: Log level name, usually ``Settings.log_level`` (default from config)
        json_logs: Render JSON lines; falls back to the console renderer
    """
    level = (level or config.LOG_LEVEL).upper()
    numeric_level = getattr(logging, level, logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=numeric_level,
    )
    # basicConfig is a no-op once handlers exist
    logging.getLogger().setLevel(numeric_level)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
