"""
Structured logging with JSON formatter and correlation ID support.
Every log line carries the request (or sweep) correlation id so a single
rebooking attempt can be followed from the API call to the commit.
"""
import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Optional
from contextvars import ContextVar

from rebooking.lib.settings import settings


# Context variable to store correlation_id per request or batch run
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

# Attributes every LogRecord has; anything else came in through `extra=`
_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime", "extra_fields"}


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.
    Outputs log records as JSON objects with timestamp, level, message, and context.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Fields passed with log_with_context()
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        # Fields passed directly with logger.x(..., extra={...})
        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and key not in log_data:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO", json_format: bool = True) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, use JSON formatter; otherwise use simple text format
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Quiet third-party loggers
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name (typically __name__)."""
    return logging.getLogger(name)


def set_correlation_id(correlation_id: Optional[str]) -> None:
    """
    Set the correlation ID for the current context.
    Called at the start of each request and each scheduled sweep.
    """
    correlation_id_var.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID, or None outside a request."""
    return correlation_id_var.get()


def log_with_context(logger: logging.Logger, level: str, message: str, **extra_fields) -> None:
    """
    Log a message with additional context fields.

    Args:
        logger: Logger instance
        level: Log level (debug, info, warning, error, critical)
        message: Log message
        **extra_fields: Additional fields to include in the log
    """
    log_func = getattr(logger, level.lower())
    exc_info = extra_fields.pop("exc_info", False)
    log_func(message, extra={"extra_fields": extra_fields}, exc_info=exc_info)


# Initialize logging on module import
setup_logging(
    level="DEBUG" if settings.debug else "INFO",
    json_format=True
)
