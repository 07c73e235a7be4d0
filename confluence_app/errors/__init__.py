"""
Error classification system for the confluence engine.

Structured exception hierarchy separating data problems (recoverable,
degrade to rejections), component failures and remote broker failures.
"""

from .data_quality import (
    DataQualityError,
    TemporalDataError,
    MalformedDataError,
)
from .system_failures import (
    SystemFailureError,
    IndicatorComputationError,
    StateTransitionError,
    ConfigurationError,
    PersistenceError,
)
from .recovery import (
    RecoverableError,
    BrokerError,
)

__all__ = [
    # Data Quality Errors
    "DataQualityError",
    "TemporalDataError",
    "MalformedDataError",
    # System Failures
    "SystemFailureError",
    "IndicatorComputationError",
    "StateTransitionError",
    "ConfigurationError",
    "PersistenceError",
    # Recovery Categories
    "RecoverableError",
    "BrokerError",
]
