"""Local anonymous provider.

Mints anonymous sessions entirely on the client: no backend round-trip and
no verified identity. Sessions are persisted through the storage port and
silently extended on expiry.
"""

from __future__ import annotations

import base64
import time
import uuid
from typing import TYPE_CHECKING, Any, Callable

import httpx
import orjson
import structlog

from authclient.domain.entities import NormalizedSession, ProviderMetadata, parse_expires_at
from authclient.ports.outbound import AuthProvider, StoragePort

if TYPE_CHECKING:
    from authclient.application.session_store import SessionStore

logger = structlog.get_logger(__name__)

_SESSION_TTL_S = 24 * 60 * 60


class LocalAuthProvider(AuthProvider):
    name = "local"
    storage_key = "local_anonymous_session"

    def __init__(
        self,
        storage: StoragePort,
        *,
        session_ttl: float = _SESSION_TTL_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._ttl = session_ttl
        self._clock = clock

    def normalize_session(self, raw: dict[str, Any]) -> NormalizedSession | None:
        if not raw:
            return None
        user = raw.get("user")
        return NormalizedSession(
            access_token=raw.get("access_token") or raw.get("token"),
            provider=self.name,
            user=user,
            is_anonymous=True,
            provider_id=raw.get("provider_id") or (user or {}).get("id"),
            expires_at=parse_expires_at(raw.get("expires_at")),
            raw=raw,
        )

    async def get_stored_session(self) -> dict[str, Any] | None:
        try:
            session = await self._load()
            if session is None:
                return None
            expires_at = parse_expires_at(session.get("expires_at"))
            if expires_at is not None and self._clock() > expires_at:
                logger.info("local_session_expired")
                await self._storage.delete(self.storage_key)
                return None
            return session
        except Exception as exc:
            logger.warning("local_session_restore_failed", error=str(exc))
            return None

    async def start_anonymous_session(self) -> dict[str, Any]:
        anon_id = str(uuid.uuid4())
        now = self._clock()
        token = base64.b64encode(f"local-anon-{anon_id}-{int(now * 1000)}".encode()).decode()
        session = {
            "access_token": token,
            "user": {
                "id": anon_id,
                "email": f"anon-{anon_id[:8]}@local",
                "is_anonymous": True,
            },
            "expires_at": now + self._ttl,
            "_provider": self.name,
        }
        await self._save(session)
        logger.info("local_anonymous_session_started", user_id=anon_id)
        return session

    async def refresh_session(self, current: NormalizedSession) -> dict[str, Any]:
        session = {**current.to_dict(), "expires_at": self._clock() + self._ttl}
        await self._save(session)
        return session

    async def handle_token_expiry(
        self, store: SessionStore, request: httpx.Request
    ) -> httpx.Request | None:
        try:
            session = await self._load()
            if session is None and store.session is not None:
                session = store.session.to_dict()
            if session is None:
                return None

            session["expires_at"] = self._clock() + self._ttl
            await self._save(session)
            if not await store.set_session(session, self.name):
                return None

            request.headers["Authorization"] = f"Bearer {store.token}"
            return request
        except Exception as exc:
            logger.warning("local_token_refresh_failed", error=str(exc))
            return None

    async def sign_out(self) -> None:
        await self._storage.delete(self.storage_key)

    def get_metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            display_name="Local Anonymous",
            icon="mdi-incognito",
            configured=True,
            is_anonymous_only=True,
        )

    # ── Persistence ──────────────────────────────────────────
    async def _load(self) -> dict[str, Any] | None:
        stored = await self._storage.get(self.storage_key)
        return orjson.loads(stored) if stored else None

    async def _save(self, session: dict[str, Any]) -> None:
        await self._storage.set(self.storage_key, orjson.dumps(session).decode())
