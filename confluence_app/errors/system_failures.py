"""
System failure error classifications for unrecoverable errors.

These exceptions represent failures of a component rather than of the
data flowing through it.
"""

from typing import Optional, Dict, Any


class SystemFailureError(Exception):
    """Base class for unrecoverable system failures."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
        self.recoverable = False


class IndicatorComputationError(SystemFailureError):
    """An indicator adapter failed to produce its snapshot."""

    def __init__(self, message: str, indicator: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.indicator = indicator


class StateTransitionError(SystemFailureError):
    """Invalid position state transition."""

    def __init__(self, message: str, current_state: Optional[str] = None,
                 attempted_transition: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.current_state = current_state
        self.attempted_transition = attempted_transition


class ConfigurationError(SystemFailureError):
    """Configuration failed validation and cannot be used."""

    def __init__(self, message: str, errors: Optional[list] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or []


class PersistenceError(SystemFailureError):
    """Database or file system persistence failures."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 target: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.target = target
