"""Tests for the sliding-window rate limiter."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import orjson
import pytest

from authclient.adapters.storage import MemoryStorageAdapter
from authclient.config import RateLimitRule, RateLimitSettings
from authclient.shared.resilience.rate_limiter import RateLimiter
from tests.conftest import FakeClock


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_login_budget_and_replenishment(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(MemoryStorageAdapter(), RateLimitSettings(), clock=clock)

        for _ in range(5):
            assert await limiter.check("login") is True
            clock.advance(1)
        assert await limiter.check("login") is False

        clock.advance(301)
        assert await limiter.check("login") is True

    @pytest.mark.asyncio
    async def test_window_slides_per_attempt(self) -> None:
        clock = FakeClock()
        settings = RateLimitSettings(rules={"signup": RateLimitRule(max_requests=2, window_seconds=10)})
        limiter = RateLimiter(MemoryStorageAdapter(), settings, clock=clock)

        assert await limiter.check("signup")
        clock.advance(6)
        assert await limiter.check("signup")
        clock.advance(3)
        assert not await limiter.check("signup")
        clock.advance(2)  # first attempt now 11s old
        assert await limiter.check("signup")

    @pytest.mark.asyncio
    async def test_unconfigured_action_is_allowed(self) -> None:
        limiter = RateLimiter(MemoryStorageAdapter(), RateLimitSettings(), clock=FakeClock())
        for _ in range(50):
            assert await limiter.check("profile") is True

    @pytest.mark.asyncio
    async def test_disabled_limiter_allows_everything(self) -> None:
        limiter = RateLimiter(MemoryStorageAdapter(), RateLimitSettings(enabled=False), clock=FakeClock())
        for _ in range(10):
            assert await limiter.check("login") is True

    @pytest.mark.asyncio
    async def test_attempts_persisted_as_json(self) -> None:
        clock = FakeClock(now=100.0)
        storage = MemoryStorageAdapter()
        limiter = RateLimiter(storage, RateLimitSettings(), clock=clock)
        await limiter.check("login")
        clock.advance(2)
        await limiter.check("login")
        assert orjson.loads(await storage.get("rate_limit:login")) == [100.0, 102.0]

    @pytest.mark.asyncio
    async def test_storage_failure_fails_open(self) -> None:
        storage = MagicMock()
        storage.get = AsyncMock(side_effect=ConnectionError("redis down"))
        limiter = RateLimiter(storage, RateLimitSettings(), clock=FakeClock())
        assert await limiter.check("login") is True

    @pytest.mark.asyncio
    async def test_reset_clears_attempts(self) -> None:
        settings = RateLimitSettings(rules={"login": RateLimitRule(max_requests=1, window_seconds=60)})
        limiter = RateLimiter(MemoryStorageAdapter(), settings, clock=FakeClock())
        assert await limiter.check("login")
        assert not await limiter.check("login")
        await limiter.reset("login")
        assert await limiter.check("login")
