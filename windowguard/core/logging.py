"""Structured logging configuration for the throttler.

This module provides a structured logging setup using Python's standard
logging module with JSON formatting for production environments, plus the
narrow :class:`ThrottlerLogger` capability that the core logs through.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from windowguard.core.async_logging import setup_async_logging
from windowguard.core.config import ThrottlerSettings


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON objects for consumption by log aggregation
    systems like ELK Stack or Grafana Loki.

    Attributes:
        fields: List of fields to include in JSON output
    """

    # Standard fields always included
    STANDARD_FIELDS = ["name", "levelname", "message", "timestamp"]

    # Contextual fields carried by throttler events
    CONTEXT_FIELDS = [
        "operation",     # evaluate, trim, reset, ...
        "throttler",     # Named policy
        "key",           # Masked rate limit key
        "limit",         # Policy limit_count
        "current",       # Entries in the window
        "remaining",     # Remaining admissions
        "allowed",       # Decision outcome
        "strategy",      # Failure strategy applied
        "source",        # store | fail-open | fail-closed | local-fallback
        "duration_ms",   # Operation latency in milliseconds
    ]

    def __init__(
        self,
        fields: Optional[list] = None,
        datefmt: Optional[str] = None,
    ):
        super().__init__(datefmt=datefmt)
        self.fields = fields or (self.STANDARD_FIELDS + self.CONTEXT_FIELDS)

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON string representation of the log record
        """
        log_data: Dict[str, Any] = {}

        record.message = record.getMessage()

        log_data["timestamp"] = datetime.now().astimezone().isoformat()
        log_data["level"] = record.levelname
        log_data["logger"] = record.name
        log_data["message"] = record.message

        log_data["source_location"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key in self.CONTEXT_FIELDS:
                continue
            log_data.setdefault("extra", {})[key] = value

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Logging filter that adds default throttler context fields.

    Text formatters reference these fields directly, so every record must
    carry them even when the caller did not.
    """

    CONTEXT_DEFAULTS = {field: None for field in JSONFormatter.CONTEXT_FIELDS}

    def filter(self, record: logging.LogRecord) -> bool:
        for field, default in self.CONTEXT_DEFAULTS.items():
            if not hasattr(record, field):
                setattr(record, field, default)
        return True


def get_logging_config(
    settings: Optional[ThrottlerSettings] = None,
) -> Dict[str, Any]:
    """Get logging configuration dictionary.

    Returns:
        Logging configuration dict compatible with logging.config.dictConfig
    """
    log_format = settings.log_format if settings else "text"
    log_level = settings.log_level if settings else "INFO"
    throttler_level = "DEBUG" if settings and settings.enable_debug_logging else log_level

    formatters = {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "structured": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s - operation=%(operation)s - key=%(key)s - current=%(current)s - remaining=%(remaining)s"
        },
    }

    if log_format == "json":
        formatters["json"] = {
            "()": "windowguard.core.logging.JSONFormatter",
        }
        default_formatter = "json"
    else:
        default_formatter = "structured" if log_format == "structured" else "standard"

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": throttler_level,
            "formatter": default_formatter,
            "stream": sys.stdout,
            "filters": ["context"],
        },
        "error_console": {
            "class": "logging.StreamHandler",
            "level": "ERROR",
            "formatter": default_formatter,
            "stream": sys.stderr,
            "filters": ["context"],
        },
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {
                "()": "windowguard.core.logging.ContextFilter",
            },
        },
        "handlers": handlers,
        "loggers": {
            "windowguard": {
                "level": throttler_level,
                "handlers": ["console", "error_console"],
                "propagate": False,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
    }


def setup_logging(
    settings: Optional[ThrottlerSettings] = None, use_async: bool = True
) -> None:
    """Configure logging, optionally moving I/O to a background thread."""
    logging.config.dictConfig(get_logging_config(settings))

    if use_async:
        setup_async_logging("windowguard")

    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str = "windowguard") -> logging.Logger:
    """Get a logger instance with the specified name."""
    return logging.getLogger(name)


def get_log_context(
    operation: Optional[str] = None,
    key: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Create a log context dictionary for use with the extra parameter.

    None values are dropped and names that would collide with LogRecord
    attributes are prefixed with ``ctx_``.

    Example:
        >>> logger.info(
        ...     "Rate limit exceeded",
        ...     extra=get_log_context(operation="evaluate", key="tena****1234", limit=5)
        ... )
    """
    context = {"operation": operation, "key": key}
    context.update(extra)
    return {
        (f"ctx_{k}" if k in _RESERVED_ATTRS else k): v
        for k, v in context.items()
        if v is not None
    }


class ThrottlerLogger:
    """Narrow logging capability consumed by the throttler core.

    ``context`` mappings become structured ``extra`` fields on the
    underlying stdlib logger. Logging never raises into the caller: a
    failing handler or formatter is ignored so it cannot turn into an
    evaluation failure.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or get_logger("windowguard.throttler")

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def is_enabled_for(self, level: int) -> bool:
        try:
            return self._logger.isEnabledFor(level)
        except Exception:
            return False

    def debug(self, message: str, context: Optional[Mapping[str, Any]] = None) -> None:
        self._log(logging.DEBUG, message, context)

    def info(self, message: str, context: Optional[Mapping[str, Any]] = None) -> None:
        self._log(logging.INFO, message, context)

    def warning(self, message: str, context: Optional[Mapping[str, Any]] = None) -> None:
        self._log(logging.WARNING, message, context)

    def error(
        self,
        message: str,
        context: Optional[Mapping[str, Any]] = None,
        exc: Optional[BaseException] = None,
    ) -> None:
        merged = dict(context or {})
        if exc is not None:
            merged.setdefault("error", repr(exc))
        self._log(logging.ERROR, message, merged, exc)

    def _log(
        self,
        level: int,
        message: str,
        context: Optional[Mapping[str, Any]],
        exc: Optional[BaseException] = None,
    ) -> None:
        try:
            if not self._logger.isEnabledFor(level):
                return
            exc_info = (type(exc), exc, exc.__traceback__) if exc is not None else None
            self._logger.log(
                level,
                message,
                extra=get_log_context(**dict(context or {})),
                exc_info=exc_info,
            )
        except Exception:
            pass


_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}
