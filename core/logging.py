"""
Structured logging setup

All modules obtain loggers through get_logger(); setup_logging() is called
once by the application entry point.
"""

import logging
import sys

import structlog

from core.config import settings


def setup_logging(level: str = None, json_logs: bool = None) -> None:
    """Configure structlog and route stdlib logging through the same level"""
    level = (level or settings.LOG_LEVEL).upper()
    json_logs = settings.log_json if json_logs is None else json_logs

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level, logging.INFO),
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level, logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None):
    return structlog.get_logger(name)
