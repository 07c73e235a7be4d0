"""
Data quality error classifications for bar and snapshot processing.

These exceptions categorize problems with incoming market data and
indicator snapshots. They are recoverable: the affected tick or gate
degrades to a rejection instead of stopping the session.
"""

from datetime import datetime
from typing import Optional, Dict, Any


class DataQualityError(Exception):
    """Base class for data quality issues that can be handled gracefully."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
        self.recoverable = True


class TemporalDataError(DataQualityError):
    """Timestamp or sequencing issues in market data."""

    def __init__(self, message: str, timestamp: Optional[datetime] = None,
                 expected_after: Optional[datetime] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timestamp = timestamp
        self.expected_after = expected_after


class MalformedDataError(DataQualityError):
    """Data exists but is in incorrect format."""

    def __init__(self, message: str, raw_data: Optional[str] = None,
                 expected_format: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.raw_data = raw_data
        self.expected_format = expected_format
