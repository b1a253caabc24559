"""
Resilience Layer for PayWatch.

Provides storage-backed circuit breakers and retry policies for calls to the
price source and the ledger.
"""

from .circuit import CircuitBreaker, CircuitOpenError, CircuitState
from .retry import execute_with_retry, is_transient_error

__all__ = [
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "execute_with_retry",
    "is_transient_error",
]
