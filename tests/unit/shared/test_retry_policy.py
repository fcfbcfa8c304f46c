"""Tests for error classification, request retry policy and run_with_retry."""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import format_datetime
from unittest.mock import AsyncMock

import httpx
import pytest

from authclient.domain.enums import CircuitState, ErrorCategory
from authclient.domain.exceptions import CircuitOpenError
from authclient.shared.resilience.circuit_breaker import CircuitBreaker
from authclient.shared.resilience.retry import (
    RetryPolicy,
    categorize_error,
    is_transient_error,
    parse_retry_after,
    run_with_retry,
)
from tests.conftest import FakeClock, no_sleep


def status_error(code: int, headers: dict[str, str] | None = None) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "http://api.test/data")
    response = httpx.Response(code, request=request, headers=headers)
    return httpx.HTTPStatusError(f"{code}", request=request, response=response)


def connect_error() -> httpx.ConnectError:
    return httpx.ConnectError("connection refused", request=httpx.Request("GET", "http://api.test"))


# ═══════════════════════════════════════════════════════════════
#  Classification
# ═══════════════════════════════════════════════════════════════
class TestCategorizeError:
    @pytest.mark.parametrize(
        "code, category",
        [
            (401, ErrorCategory.AUTH),
            (403, ErrorCategory.AUTH),
            (429, ErrorCategory.RATE_LIMIT),
            (404, ErrorCategory.CLIENT),
            (422, ErrorCategory.CLIENT),
            (500, ErrorCategory.SERVER),
            (503, ErrorCategory.SERVER),
        ],
    )
    def test_status_codes(self, code: int, category: ErrorCategory) -> None:
        assert categorize_error(status_error(code)) == category

    def test_no_response_is_network(self) -> None:
        assert categorize_error(connect_error()) == ErrorCategory.NETWORK

    def test_timeouts(self) -> None:
        request = httpx.Request("GET", "http://api.test")
        assert categorize_error(httpx.ReadTimeout("slow", request=request)) == ErrorCategory.TIMEOUT
        assert categorize_error(TimeoutError()) == ErrorCategory.TIMEOUT
        assert categorize_error(RuntimeError("operation timeout exceeded")) == ErrorCategory.TIMEOUT

    def test_transient(self) -> None:
        assert is_transient_error(status_error(503))
        assert is_transient_error(status_error(429))
        assert not is_transient_error(status_error(400))
        assert not is_transient_error(status_error(401))
        assert not is_transient_error(connect_error())


# ═══════════════════════════════════════════════════════════════
#  RetryPolicy
# ═══════════════════════════════════════════════════════════════
class TestRetryPolicy:
    policy = RetryPolicy()

    def test_retryable_server_status(self) -> None:
        assert self.policy.should_retry(status_error(503), 0)
        assert not self.policy.should_retry(status_error(501), 0)

    def test_client_and_auth_errors_not_retried(self) -> None:
        assert not self.policy.should_retry(status_error(404), 0)
        assert not self.policy.should_retry(status_error(401), 0)

    def test_global_cap(self) -> None:
        assert self.policy.should_retry(status_error(503), 2)
        assert not self.policy.should_retry(status_error(503), 3)

    def test_network_budget(self) -> None:
        assert self.policy.should_retry(connect_error(), 1)
        assert not self.policy.should_retry(connect_error(), 2)

    def test_no_retry_flag(self) -> None:
        assert not self.policy.should_retry(status_error(503), 0, no_retry=True)

    def test_backoff_grows_and_caps(self) -> None:
        policy = RetryPolicy(base_delay=1.0, multiplier=2.0, jitter_range=0.2, max_delay=5.0)
        delays = [policy.compute_delay(n, status_error(503), rng=lambda: 0.5) for n in (1, 2, 3, 4)]
        assert delays == [pytest.approx(1.1), pytest.approx(2.1), pytest.approx(4.1), 5.0]

    def test_jitter_bounds(self) -> None:
        low = self.policy.compute_delay(1, status_error(500), rng=lambda: 0.0)
        high = self.policy.compute_delay(1, status_error(500), rng=lambda: 0.999)
        assert low == pytest.approx(1.0)
        assert 1.0 <= high < 1.2

    def test_rate_limit_honours_retry_after_seconds(self) -> None:
        error = status_error(429, {"Retry-After": "7"})
        assert self.policy.compute_delay(1, error) == 7.0

    def test_rate_limit_retry_after_is_capped(self) -> None:
        error = status_error(429, {"Retry-After": "600"})
        assert self.policy.compute_delay(1, error) == 60.0

    def test_rate_limit_without_header_uses_fixed_delay(self) -> None:
        assert self.policy.compute_delay(1, status_error(429)) == 5.0
        assert self.policy.compute_delay(3, status_error(429)) == 15.0

    def test_retry_after_http_date(self) -> None:
        now = 1_700_000_000
        header = format_datetime(datetime.fromtimestamp(now + 30, tz=timezone.utc), usegmt=True)
        assert parse_retry_after(header, now=now) == pytest.approx(30.0)
        error = status_error(429, {"Retry-After": header})
        assert self.policy.compute_delay(1, error, now=now) == pytest.approx(30.0)

    def test_retry_after_garbage(self) -> None:
        assert parse_retry_after("soon") is None
        assert parse_retry_after(None) is None
        assert parse_retry_after("-5") == 0.0


# ═══════════════════════════════════════════════════════════════
#  run_with_retry
# ═══════════════════════════════════════════════════════════════
class TestRunWithRetry:
    @pytest.mark.asyncio
    async def test_transient_failures_retried_until_success(self) -> None:
        operation = AsyncMock(side_effect=[status_error(503), status_error(502), {"ok": True}])
        sleep = AsyncMock()
        result = await run_with_retry(operation, "profile", max_attempts=3, base_delay=0.5, jitter_range=0.0, sleep=sleep)
        assert result == {"ok": True}
        assert operation.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_non_transient_failure_not_retried(self) -> None:
        operation = AsyncMock(side_effect=status_error(401))
        with pytest.raises(httpx.HTTPStatusError):
            await run_with_retry(operation, "profile", max_attempts=3, sleep=no_sleep)
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exhausted_attempts_reraise_last_error(self) -> None:
        operation = AsyncMock(side_effect=status_error(500))
        with pytest.raises(httpx.HTTPStatusError):
            await run_with_retry(operation, "profile", max_attempts=2, sleep=no_sleep)
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_open_breaker_short_circuits(self) -> None:
        breaker = CircuitBreaker("profile", threshold=2, clock=FakeClock())
        operation = AsyncMock(side_effect=status_error(500))
        with pytest.raises(CircuitOpenError):
            await run_with_retry(operation, "profile", max_attempts=5, breaker=breaker, sleep=no_sleep)
        assert operation.await_count == 2
        assert breaker.state == CircuitState.OPEN
