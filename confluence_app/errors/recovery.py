"""
Recovery strategy classifications for error handling.

Broker calls are remote and fallible; their failures are recoverable in the
sense that the caller may simply try again on a later tick.
"""

from typing import Optional


class RecoverableError(Exception):
    """Mixin for errors that can be recovered from automatically."""

    def __init__(self, message: str, retry_count: int = 0,
                 max_retries: int = 3, **kwargs):
        super().__init__(message)
        self.retry_count = retry_count
        self.max_retries = max_retries
        self.recoverable = True


class BrokerError(RecoverableError):
    """A broker call (account, order submission, order status) failed."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 symbol: Optional[str] = None, client_id: Optional[str] = None,
                 **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.symbol = symbol
        self.client_id = client_id
