"""Storage adapters implementing StoragePort.

Backs provider session caches and rate-limit windows. ``memory`` storage
lives as long as the process; ``session`` storage is Redis-backed when a
URL is configured so state survives restarts of a single deployment.
"""

from __future__ import annotations

import time

import redis.asyncio as redis
import structlog

from authclient.config import TokenStorage
from authclient.ports.outbound import StoragePort

logger = structlog.get_logger(__name__)


class MemoryStorageAdapter(StoragePort):
    """In-process key-value store with optional TTL."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._expiry: dict[str, float] = {}

    async def get(self, key: str) -> str | None:
        if key in self._expiry and self._expiry[key] < time.time():
            self._data.pop(key, None)
            del self._expiry[key]
            return None
        return self._data.get(key)

    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        self._data[key] = value
        if ttl_seconds:
            self._expiry[key] = time.time() + ttl_seconds
        else:
            self._expiry.pop(key, None)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)
        self._expiry.pop(key, None)

    async def close(self) -> None:
        self._data.clear()
        self._expiry.clear()


class RedisStorageAdapter(StoragePort):
    """Async Redis storage; errors are logged and surface as misses."""

    def __init__(self, url: str, *, key_prefix: str = "authclient:", max_connections: int = 10) -> None:
        self._prefix = key_prefix
        self._pool = redis.ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )
        self._client = redis.Redis(connection_pool=self._pool)

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(self._prefix + key)
        except redis.RedisError as exc:
            logger.error("redis_get_error", key=key, error=str(exc))
            return None

    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        try:
            if ttl_seconds:
                await self._client.setex(self._prefix + key, ttl_seconds, value)
            else:
                await self._client.set(self._prefix + key, value)
        except redis.RedisError as exc:
            logger.error("redis_set_error", key=key, error=str(exc))

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._prefix + key)
        except redis.RedisError as exc:
            logger.error("redis_delete_error", key=key, error=str(exc))

    async def close(self) -> None:
        await self._client.aclose()
        await self._pool.aclose()

    async def health_check(self) -> bool:
        try:
            return await self._client.ping()
        except redis.RedisError:
            return False


def resolve_token_storage(preference: TokenStorage | str | None, redis_url: str = "") -> StoragePort:
    """Pick the storage backend for a ``token_storage`` preference.

    ``local`` (long-lived browser-style storage) is not permitted and is
    treated as ``session``; unknown values fall back to memory.
    """
    value = preference.value if isinstance(preference, TokenStorage) else (preference or "memory")
    value = value.lower()

    if value == TokenStorage.LOCAL.value:
        logger.warning("token_storage_local_disallowed", fallback=TokenStorage.SESSION.value)
        value = TokenStorage.SESSION.value

    if value == TokenStorage.SESSION.value:
        if redis_url:
            return RedisStorageAdapter(redis_url)
        logger.info("token_storage_session_without_redis", fallback=TokenStorage.MEMORY.value)
        return MemoryStorageAdapter()

    if value != TokenStorage.MEMORY.value:
        logger.warning("token_storage_unknown", preference=value, fallback=TokenStorage.MEMORY.value)
    return MemoryStorageAdapter()
