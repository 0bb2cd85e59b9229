"""Shared logging utilities for structured logging across the pipeline.

This module provides a centralized logging configuration using structlog for
structured, JSON-formatted logs. Job and retrieval events are emitted as
snake_case event names with key/value context so a batch run can be followed
job by job in the log stream.
"""

import logging
import os
import sys

import structlog

_configured = False


def _renderer() -> structlog.types.Processor:
    """Pick the final renderer from LOG_FORMAT (json by default)."""
    if os.getenv("LOG_FORMAT", "json").lower() == "console":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def configure_logging(level: str | None = None) -> None:
    """Configure structlog and the standard library root logger.

    Args:
        level: Log level name. Defaults to the LOG_LEVEL environment variable,
            falling back to INFO.
    """
    global _configured

    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _renderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name, logging.INFO),
    )
    _configured = True


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a configured structured logger instance.

    Logging is configured on first use; later calls reuse that configuration.

    Args:
        name: Logger name (typically __name__ from the calling module).

    Returns:
        Configured structlog logger instance ready for use.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("job_dispatched", job_id="job_abc", priority=5)
        >>> logger.exception("transcription_failed", error_type="APIError")
    """
    if not _configured:
        configure_logging()

    return structlog.get_logger(name)
