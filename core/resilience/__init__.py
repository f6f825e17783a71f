"""
Core Resilience — Fault Tolerance Primitives.

Provides reliability patterns for outbound provider calls:
- CircuitBreaker: Fast-fail gate after repeated provider failures
- RetryManager: Exponential backoff with jitter, auth errors never retried
- ResilienceRegistry: One breaker + retry manager per provider
"""
from core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitState,
)
from core.resilience.registry import ResilienceRegistry
from core.resilience.retry import (
    RetryAttempt,
    RetryManager,
)

__all__ = [
    # Breaker
    "CircuitBreaker",
    "CircuitState",
    # Retry
    "RetryAttempt",
    "RetryManager",
    # Registry
    "ResilienceRegistry",
]
