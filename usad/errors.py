"""
Error types for the sparse signature and anomaly detection core.

Two categories are surfaced to callers:

- ConfigurationError: invalid parameters (non-positive dimension or k,
  alpha outside (0, 1), empty calibration set). Fatal to the call.
- NotCalibratedError: scoring requested before ``calibrate`` succeeded.
  Recoverable by calibrating first.
"""

import numbers
from typing import Any, Dict, Optional


class UsadError(Exception):
    """
    Base exception for all usad errors.

    Carries a structured ``details`` dict alongside the message so callers
    can report the offending parameter without parsing text.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize error.

        Args:
            message: Error message
            details: Optional structured error context
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(UsadError, ValueError):
    """Raised when a configuration value or argument is invalid."""

    def __init__(self, message: str,
                 parameter: Optional[str] = None,
                 value: Any = None,
                 details: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration error.

        Args:
            message: Error message
            parameter: Name of the offending parameter
            value: Offending value
            details: Additional error context
        """
        super().__init__(message, details)
        self.parameter = parameter
        self.value = value
        self.details.update({
            'parameter': parameter,
            'value': value
        })


class NotCalibratedError(UsadError, RuntimeError):
    """Raised when a detector is used before ``calibrate`` has been called."""

    def __init__(self, message: str = "detector is not calibrated; call calibrate() first",
                 operation: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.operation = operation
        self.details['operation'] = operation


def require_positive(name: str, value: Any) -> None:
    """Raise ConfigurationError unless ``value`` is a positive number."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real) or not value > 0:
        raise ConfigurationError(f"{name} must be positive, got {value!r}",
                                 parameter=name, value=value)


def require_open_unit(name: str, value: Any) -> None:
    """Raise ConfigurationError unless ``value`` lies in the open interval (0, 1)."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real) or not (0.0 < value < 1.0):
        raise ConfigurationError(f"{name} must be in (0, 1), got {value!r}",
                                 parameter=name, value=value)


def require_positive_int(name: str, value: Any) -> int:
    """Raise ConfigurationError unless ``value`` is a positive integer; return it as int."""
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}",
                                 parameter=name, value=value)
    require_positive(name, value)
    return int(value)
