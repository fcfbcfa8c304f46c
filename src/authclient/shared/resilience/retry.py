"""Retry policy: error classification, retryability and backoff.

Two layers use this module:

* the request interceptor, which replays individual HTTP requests according
  to ``RetryPolicy`` (per-category budgets, ``Retry-After`` support), and
* the session store, which wraps whole provider/backend operations with
  ``run_with_retry``: tenacity-driven backoff around a named circuit breaker.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from authclient.config import AuthSettings
from authclient.domain.enums import ErrorCategory
from authclient.shared.resilience.circuit_breaker import CircuitBreaker

logger = structlog.get_logger(__name__)

T = TypeVar("T")


# ── Classification ───────────────────────────────────────────
def status_of(error: BaseException) -> int | None:
    """HTTP status carried by ``error``, if it came with a response."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def response_of(error: BaseException) -> httpx.Response | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response
    return None


def _looks_like_timeout(error: BaseException) -> bool:
    return isinstance(error, (httpx.TimeoutException, TimeoutError)) or (
        "timeout" in str(error).lower()
    )


def categorize_error(error: BaseException) -> ErrorCategory:
    known = getattr(error, "category", None)
    if isinstance(known, ErrorCategory):
        return known
    status = status_of(error)
    if status is None:
        return ErrorCategory.TIMEOUT if _looks_like_timeout(error) else ErrorCategory.NETWORK
    if status in (401, 403):
        return ErrorCategory.AUTH
    if status == 429:
        return ErrorCategory.RATE_LIMIT
    if 400 <= status < 500:
        return ErrorCategory.CLIENT
    if status >= 500:
        return ErrorCategory.SERVER
    return ErrorCategory.UNKNOWN


def is_transient_error(error: BaseException) -> bool:
    """Failures worth retrying at the operation level: timeouts, 429 and 5xx."""
    return categorize_error(error) in (
        ErrorCategory.TIMEOUT,
        ErrorCategory.RATE_LIMIT,
        ErrorCategory.SERVER,
    )


def parse_retry_after(value: str | None, now: float | None = None) -> float | None:
    """Seconds to wait from a ``Retry-After`` header (delta-seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max(0.0, when.timestamp() - (now if now is not None else time.time()))


# ═══════════════════════════════════════════════════════════════
#  Request-level policy
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class RetryPolicy:
    """Retry decisions and delays for intercepted requests (seconds)."""

    max_retries: int = 3
    network_error_retries: int = 2
    retryable_status_codes: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})
    base_delay: float = 1.0
    multiplier: float = 2.0
    jitter_range: float = 0.2
    max_delay: float = 30.0
    rate_limit_fixed_delay: float = 5.0
    rate_limit_max_wait: float = 60.0

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> RetryPolicy:
        return cls(
            max_retries=settings.retry.max_attempts,
            network_error_retries=settings.retry.network_error_retries,
            retryable_status_codes=frozenset(settings.retry.retryable_status_codes),
            base_delay=settings.timeouts.retry_delay,
            multiplier=settings.timeouts.backoff_multiplier,
            jitter_range=settings.retry.jitter_range,
            max_delay=settings.timeouts.max_retry_delay,
            rate_limit_fixed_delay=settings.retry.rate_limit_fixed_delay,
            rate_limit_max_wait=settings.retry.rate_limit_max_wait,
        )

    def should_retry(
        self, error: BaseException, retry_count: int, *, no_retry: bool = False
    ) -> bool:
        if no_retry or retry_count >= self.max_retries:
            return False

        category = categorize_error(error)
        if category == ErrorCategory.NETWORK:
            return retry_count < self.network_error_retries
        if category in (ErrorCategory.TIMEOUT, ErrorCategory.RATE_LIMIT):
            return True
        if category == ErrorCategory.SERVER:
            return status_of(error) in self.retryable_status_codes
        return False

    def compute_delay(
        self,
        retry_count: int,
        error: BaseException,
        *,
        rng: Callable[[], float] = random.random,
        now: float | None = None,
    ) -> float:
        """Delay before replay number ``retry_count`` (1-based)."""
        if categorize_error(error) == ErrorCategory.RATE_LIMIT:
            response = response_of(error)
            retry_after = parse_retry_after(
                response.headers.get("Retry-After") if response is not None else None, now
            )
            if retry_after is None:
                retry_after = self.rate_limit_fixed_delay * retry_count
            return min(retry_after, self.rate_limit_max_wait)

        backoff = self.base_delay * self.multiplier ** max(retry_count - 1, 0)
        return min(backoff + rng() * self.jitter_range, self.max_delay)


# ═══════════════════════════════════════════════════════════════
#  Operation-level retry
# ═══════════════════════════════════════════════════════════════
def _log_before_sleep(operation_name: str) -> Callable[[RetryCallState], None]:
    def _log(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "operation_retry_scheduled",
            operation=operation_name,
            attempt=state.attempt_number,
            delay_s=round(state.next_action.sleep, 3) if state.next_action else None,
            error=str(exc),
        )

    return _log


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    operation_name: str,
    *,
    max_attempts: int,
    breaker: CircuitBreaker | None = None,
    base_delay: float = 1.0,
    multiplier: float = 2.0,
    max_delay: float = 30.0,
    jitter_range: float = 0.2,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``operation`` through ``breaker`` retrying transient failures.

    Non-transient failures and an open circuit propagate on the first attempt.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(max_attempts, 1)),
        wait=wait_exponential(multiplier=base_delay, exp_base=multiplier, max=max_delay)
        + wait_random(0, jitter_range),
        retry=retry_if_exception(is_transient_error),
        before_sleep=_log_before_sleep(operation_name),
        sleep=sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            if breaker is not None:
                result = await breaker.execute(operation)
            else:
                result = await operation()
    return result
