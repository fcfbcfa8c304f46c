"""Tests for the single-flight refresh coordinator."""

from __future__ import annotations

import asyncio

import pytest

from authclient.domain.exceptions import SessionExpiredError
from authclient.shared.middleware.refresh import RefreshCoordinator


class TestRefreshCoordinator:
    @pytest.mark.asyncio
    async def test_only_one_leader_per_cycle(self) -> None:
        coordinator = RefreshCoordinator()
        generation = coordinator.try_begin_refresh()
        assert generation == 1
        assert coordinator.in_progress
        assert coordinator.try_begin_refresh() is None

    @pytest.mark.asyncio
    async def test_waiters_receive_new_token_in_subscription_order(self) -> None:
        coordinator = RefreshCoordinator()
        generation = coordinator.try_begin_refresh()
        order: list[int] = []

        async def wait(i: int) -> str:
            token = await coordinator.subscribe()
            order.append(i)
            return token

        tasks = [asyncio.create_task(wait(i)) for i in range(3)]
        await asyncio.sleep(0)
        assert coordinator.pending == 3

        assert coordinator.complete_refresh(generation, "fresh") is True
        assert await asyncio.gather(*tasks) == ["fresh", "fresh", "fresh"]
        assert order == [0, 1, 2]
        assert not coordinator.in_progress
        assert coordinator.pending == 0

    @pytest.mark.asyncio
    async def test_failure_rejects_every_waiter(self) -> None:
        coordinator = RefreshCoordinator()
        generation = coordinator.try_begin_refresh()
        futures = [coordinator.subscribe() for _ in range(2)]

        coordinator.fail_refresh(generation, SessionExpiredError())

        for future in futures:
            with pytest.raises(SessionExpiredError):
                await future
        assert not coordinator.in_progress
        assert coordinator.pending == 0

    @pytest.mark.asyncio
    async def test_stale_settlement_is_ignored(self) -> None:
        coordinator = RefreshCoordinator()
        first = coordinator.try_begin_refresh()
        assert coordinator.complete_refresh(first, "a")
        second = coordinator.try_begin_refresh()
        waiter = coordinator.subscribe()

        assert coordinator.complete_refresh(first, "stale") is False
        assert coordinator.fail_refresh(first, SessionExpiredError()) is False
        assert coordinator.in_progress
        assert not waiter.done()

        coordinator.complete_refresh(second, "b")
        assert await waiter == "b"

    @pytest.mark.asyncio
    async def test_new_cycle_after_settlement(self) -> None:
        coordinator = RefreshCoordinator()
        generation = coordinator.try_begin_refresh()
        coordinator.fail_refresh(generation, SessionExpiredError())
        assert coordinator.try_begin_refresh() == generation + 1
