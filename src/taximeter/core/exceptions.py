"""Standardized exception hierarchy for the taximeter engine."""

from typing import Any


class MeterError(Exception):
    """Base exception for all taximeter errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransientError(MeterError):
    """Errors that may succeed on retry."""

    pass


class PersistenceError(TransientError):
    """Trip recorder storage failed."""

    pass


class PermanentError(MeterError):
    """Errors that will not succeed on retry."""

    pass


class ValidationError(PermanentError):
    """Invalid input or data format."""

    pass


class InvalidSampleError(ValidationError):
    """Position sample with negative speed or non-finite coordinates."""

    pass


class StateError(PermanentError):
    """Invalid state transition."""

    pass


class InvalidTransitionError(StateError):
    """Event not allowed in the current meter state."""

    pass


class ConfigurationError(PermanentError):
    """Missing or invalid configuration."""

    pass


class UnknownTariffError(ConfigurationError):
    """Tariff name not present in the registry."""

    pass


class TariffLockedError(ConfigurationError):
    """Tariff selection attempted while a trip is running or settling."""

    pass


class FatalError(MeterError):
    """Critical errors requiring immediate shutdown."""

    pass


class NoActiveTariffError(FatalError):
    """Tariff registry is empty, so no tariff can be active."""

    pass
