"""Core error types shared across the meter."""

from .exceptions import (
    ConfigurationError,
    FatalError,
    InvalidSampleError,
    InvalidTransitionError,
    MeterError,
    NoActiveTariffError,
    PermanentError,
    PersistenceError,
    StateError,
    TariffLockedError,
    TransientError,
    UnknownTariffError,
    ValidationError,
)

__all__ = [
    "ConfigurationError",
    "FatalError",
    "InvalidSampleError",
    "InvalidTransitionError",
    "MeterError",
    "NoActiveTariffError",
    "PermanentError",
    "PersistenceError",
    "StateError",
    "TariffLockedError",
    "TransientError",
    "UnknownTariffError",
    "ValidationError",
]
