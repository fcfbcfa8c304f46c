"""Client-side rate limiter: sliding-window counters per action.

Timestamps for each action are persisted through the ``StoragePort`` so the
window survives restarts when a durable backend is used. Entries older than
the window are evicted on every check, so the budget self-replenishes.
"""

from __future__ import annotations

import time
from typing import Callable

import orjson
import structlog

from authclient.config import RateLimitSettings
from authclient.ports.outbound import StoragePort
from authclient.shared.observability.metrics import RATE_LIMIT_DENIALS_TOTAL

logger = structlog.get_logger(__name__)

_KEY_PREFIX = "rate_limit:"


class RateLimiter:
    def __init__(
        self,
        storage: StoragePort,
        settings: RateLimitSettings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._settings = settings
        self._clock = clock

    async def check(self, action: str) -> bool:
        """Record an attempt at ``action`` and report whether it is allowed.

        Unconfigured actions are always allowed; storage failures fail open.
        """
        rule = self._settings.rules.get(action)
        if not self._settings.enabled or rule is None:
            return True

        key = f"{_KEY_PREFIX}{action}"
        try:
            now = self._clock()
            stored = await self._storage.get(key)
            attempts = [
                t for t in (orjson.loads(stored) if stored else [])
                if now - t < rule.window_seconds
            ]

            if len(attempts) >= rule.max_requests:
                RATE_LIMIT_DENIALS_TOTAL.labels(action=action).inc()
                logger.warning(
                    "rate_limit_exceeded",
                    action=action,
                    attempts=len(attempts),
                    limit=rule.max_requests,
                    window_s=rule.window_seconds,
                )
                return False

            attempts.append(now)
            await self._storage.set(
                key, orjson.dumps(attempts).decode(), ttl_seconds=int(rule.window_seconds) + 1
            )
            return True
        except Exception as exc:
            logger.warning("rate_limit_check_failed", action=action, error=str(exc))
            return True

    async def reset(self, action: str) -> None:
        await self._storage.delete(f"{_KEY_PREFIX}{action}")
