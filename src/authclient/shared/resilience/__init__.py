"""Resilience primitives: circuit breaking, rate limiting and retry."""

from authclient.shared.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
)
from authclient.shared.resilience.rate_limiter import RateLimiter
from authclient.shared.resilience.retry import (
    RetryPolicy,
    categorize_error,
    run_with_retry,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "RateLimiter",
    "RetryPolicy",
    "categorize_error",
    "run_with_retry",
]
