"""
Observability module: structured logging.
"""

from vecal.observability.logging import (
    JsonFormatter,
    LogLevel,
    StructuredLogger,
    current_context,
    setup_logging,
)

__all__ = [
    "JsonFormatter",
    "LogLevel",
    "StructuredLogger",
    "current_context",
    "setup_logging",
]
