"""
docgate Structured Logging

Configures structured JSON logging using structlog. Every event carries the
active backend engine so that log lines from either deployment can be told
apart.
"""

import logging
import sys

import structlog

from docgate.platform.config import settings

# Client libraries that log every request/heartbeat at INFO/DEBUG
NOISY_LOGGERS = ("pymongo", "httpx", "httpcore")


def add_engine(logger, method_name, event_dict):
    """Processor adding the configured engine to every event."""
    event_dict.setdefault("engine", settings.ENGINE)
    return event_dict


def configure_logging() -> None:
    """Configure structured logging for the application."""

    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            add_engine,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            # JSON in production, console in development
            structlog.processors.JSONRenderer()
            if settings.APP_ENV == "production"
            else structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    # Backend drivers log every request and heartbeat below WARNING
    noisy_level = max(log_level, logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
