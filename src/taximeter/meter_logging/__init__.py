"""Structured logging for the meter: setup, formatters and trip context."""

from .context import ContextFilter, LogContext, log_context, log_trip_context
from .filters import DefaultCorrelationFilter, DefaultTripFilter
from .formatters import DevFormatter, JSONFormatter
from .setup import setup_logging

__all__ = [
    "ContextFilter",
    "DefaultCorrelationFilter",
    "DefaultTripFilter",
    "DevFormatter",
    "JSONFormatter",
    "LogContext",
    "log_context",
    "log_trip_context",
    "setup_logging",
]
