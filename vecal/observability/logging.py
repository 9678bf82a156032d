"""
Structured Logging: JSON-Formatted with Request Context

Provides:
- JSON-formatted log output
- Context propagation (request-scoped fields via ContextVar)
- Log level filtering

Library code only emits records; handlers are installed by setup_logging()
(called from the CLI or by the embedding application).
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Optional, TextIO


class LogLevel(IntEnum):
    """Log level enumeration."""
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @classmethod
    def parse(cls, value: str) -> "LogLevel":
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown log level: {value!r}") from None


# Context variable for request-scoped fields
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

# Attributes every stdlib LogRecord carries; anything else came in via extra=
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename",
    "funcName", "levelname", "levelno", "lineno",
    "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info",
    "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message",
})


@dataclass
class LogRecord:
    """Structured log record."""
    timestamp: str
    level: str
    message: str
    logger_name: str
    extra: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize to JSON."""
        data = {
            "@timestamp": self.timestamp,
            "level": self.level,
            "message": self.message,
            "logger": self.logger_name,
        }
        data.update(self.extra)
        return json.dumps(data, default=str)


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter carrying context fields and record extras.
    """

    def format(self, record: logging.LogRecord) -> str:
        extra = dict(_log_context.get())

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                extra[key] = value

        if record.exc_info:
            extra["exception"] = self.formatException(record.exc_info)

        log_record = LogRecord(
            timestamp=datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            level=record.levelname,
            message=record.getMessage(),
            logger_name=record.name,
            extra=extra,
        )
        return log_record.to_json()


class StructuredLogger:
    """
    Structured logger with context propagation.

    Usage:
        logger = StructuredLogger("vecal.db")

        with logger.context(db="docs"):
            logger.info("Index built", kind="lsh", records=120)
    """

    __slots__ = ("_logger", "_default_extra")

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)
        self._default_extra: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self._logger.name

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.ERROR, message, **kwargs)

    def _log(self, level: LogLevel, message: str, **kwargs: Any) -> None:
        if not self._logger.isEnabledFor(level.value):
            return
        extra = {**self._default_extra, **kwargs}
        self._logger.log(level.value, message, extra=extra, stacklevel=3)

    def with_extra(self, **kwargs: Any) -> StructuredLogger:
        """Create child logger with additional default fields."""
        new_logger = StructuredLogger(self._logger.name)
        new_logger._default_extra = {**self._default_extra, **kwargs}
        return new_logger

    @staticmethod
    def context(**kwargs: Any) -> "_LogContext":
        """Context manager for request-scoped fields."""
        return _LogContext(kwargs)


class _LogContext:
    """Context manager for adding fields to all logs."""

    __slots__ = ("_fields", "_token")

    def __init__(self, fields: dict[str, Any]) -> None:
        self._fields = fields
        self._token = None

    def __enter__(self) -> _LogContext:
        self._token = _log_context.set({**_log_context.get(), **self._fields})
        return self

    def __exit__(self, *args: Any) -> None:
        if self._token is not None:
            _log_context.reset(self._token)


def current_context() -> dict[str, Any]:
    """Fields currently bound by StructuredLogger.context()."""
    return dict(_log_context.get())


def setup_logging(
    level: LogLevel = LogLevel.INFO,
    json_output: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure the vecal logger for structured output.

    Args:
        level: Minimum log level
        json_output: Use JSON formatting
        stream: Output stream (default: stderr)
    """
    root = logging.getLogger("vecal")
    root.setLevel(level.value)
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level.value)

    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        ))

    root.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("asyncio").setLevel(logging.WARNING)
