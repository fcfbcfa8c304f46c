"""Refresh coordinator: at most one token refresh in flight.

The first request to hit a 401 becomes the *leader* (``try_begin_refresh``
returns a generation number); every other 401 during that refresh
``subscribe``s and awaits the broadcast outcome instead of refreshing
itself. The leader settles the cycle with ``complete_refresh`` or
``fail_refresh``, which clears the in-progress flag and the waiter list
together before any waiter observes the result.
"""

from __future__ import annotations

import asyncio
import threading

import structlog

logger = structlog.get_logger(__name__)


class RefreshCoordinator:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_progress = False
        self._generation = 0
        self._waiters: list[asyncio.Future[str]] = []

    @property
    def in_progress(self) -> bool:
        with self._lock:
            return self._in_progress

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._waiters)

    def try_begin_refresh(self) -> int | None:
        """Claim the refresh; returns the cycle's generation, or ``None`` if one is running."""
        with self._lock:
            if self._in_progress:
                return None
            self._in_progress = True
            self._generation += 1
            return self._generation

    def subscribe(self) -> asyncio.Future[str]:
        """Future resolved with the new token, or failed with the refresh error."""
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        with self._lock:
            self._waiters.append(future)
        return future

    def complete_refresh(self, generation: int, token: str) -> bool:
        waiters = self._settle(generation)
        if waiters is None:
            return False
        for future in waiters:
            if not future.done():
                future.set_result(token)
        logger.debug("token_refresh_broadcast", generation=generation, waiters=len(waiters))
        return True

    def fail_refresh(self, generation: int, error: BaseException) -> bool:
        waiters = self._settle(generation)
        if waiters is None:
            return False
        for future in waiters:
            if not future.done():
                future.set_exception(error)
        logger.debug("token_refresh_failure_broadcast", generation=generation, waiters=len(waiters))
        return True

    def _settle(self, generation: int) -> list[asyncio.Future[str]] | None:
        """Close cycle ``generation``; stale or duplicate settlements are ignored."""
        with self._lock:
            if not self._in_progress or generation != self._generation:
                logger.debug("token_refresh_stale_settlement", generation=generation)
                return None
            waiters, self._waiters = self._waiters, []
            self._in_progress = False
            return waiters
