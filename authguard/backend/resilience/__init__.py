"""
resilience/__init__.py

Public API for the resilience sub-package.
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerStatus, CircuitState
from .retry import RetryConfig, RetryPolicy, execute_with_retry

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerStatus",
    "CircuitState",
    "RetryConfig",
    "RetryPolicy",
    "execute_with_retry",
]
