"""Google provider: OAuth relayed through backend-issued sessions.

The backend exchanges the Google credential for its own short-lived access
token and keeps the refresh credential in an HTTP-only cookie. The client
refreshes by POSTing to the backend with the CSRF cookie value echoed in a
header. Minimal session metadata (provider id + user) is cached so a silent
restore does not need an extra profile round-trip.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Callable

import httpx
import orjson
import structlog

from authclient.adapters.providers.backend import csrf_headers, link_credential
from authclient.adapters.providers.normalizers import decode_claims, user_from_google_id_token
from authclient.config import AuthSettings
from authclient.domain.entities import NormalizedSession, ProviderMetadata, parse_expires_at
from authclient.domain.exceptions import TokenRefreshError
from authclient.ports.outbound import AuthProvider, StoragePort

if TYPE_CHECKING:
    from authclient.application.session_store import SessionStore

logger = structlog.get_logger(__name__)

_DEFAULT_EXPIRES_IN_S = 30 * 24 * 60 * 60


class GoogleAuthProvider(AuthProvider):
    name = "google"
    meta_key = "google_session_meta"

    def __init__(
        self,
        http: httpx.AsyncClient,
        storage: StoragePort,
        settings: AuthSettings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._http = http
        self._storage = storage
        self._settings = settings
        self._clock = clock

    def normalize_session(self, raw: dict[str, Any]) -> NormalizedSession | None:
        if not raw:
            return None
        user = raw.get("user")
        provider_id = raw.get("provider_id")
        if not user:
            claims = decode_claims(raw.get("id_token") or raw.get("credential"))
            if claims:
                user = user_from_google_id_token(claims)
                provider_id = provider_id or claims.get("sub")

        expires_at = parse_expires_at(raw.get("expires_at"))
        if expires_at is None and raw.get("expires_in"):
            expires_at = self._clock() + float(raw["expires_in"])

        return NormalizedSession(
            access_token=raw.get("access_token"),
            provider=self.name,
            user=user,
            is_anonymous=False,
            provider_id=provider_id,
            expires_at=expires_at,
            token_type=raw.get("token_type"),
            raw=raw,
        )

    async def get_stored_session(self) -> dict[str, Any] | None:
        try:
            meta = await self._load_meta() or {}
            refreshed = await self._refresh()

            provider_id = meta.get("provider_id")
            user = meta.get("user")
            if not provider_id or not user:
                payload = await self._fetch_profile(refreshed["access_token"])
                profile_user = payload.get("user") or payload
                if not provider_id:
                    own_id = payload.get("provider_id") if payload.get("provider") == self.name else None
                    provider_id = own_id or (payload.get("linked_providers") or {}).get(self.name)
                user = user or profile_user

            await self._save_meta({"provider_id": provider_id, "user": user})
            logger.info("google_session_restored", provider_id=provider_id)
            return {
                **refreshed,
                "provider": self.name,
                "provider_id": provider_id,
                "user": user,
                "_provider": self.name,
            }
        except Exception as exc:
            logger.info("google_session_restore_failed", error=str(exc))
            await self._clear_meta()
            return None

    async def cache_session_meta(self, session: NormalizedSession) -> None:
        await self._save_meta({"provider_id": session.provider_id, "user": session.user})

    async def refresh_session(self, current: NormalizedSession) -> dict[str, Any]:
        return {**current.to_dict(), **await self._refresh()}

    async def handle_token_expiry(
        self, store: SessionStore, request: httpx.Request
    ) -> httpx.Request | None:
        current = store.session
        if current is None:
            return None
        try:
            session = {**current.to_dict(), **await self._refresh()}
            if not await store.set_session(session, self.name):
                return None
            request.headers["Authorization"] = f"Bearer {store.token}"
            return request
        except Exception as exc:
            logger.warning("google_token_refresh_failed", error=str(exc))
            await self._clear_meta()
            return None

    async def link_account(self, credential: str) -> dict[str, Any]:
        return await link_credential(
            self._http,
            self.name,
            {"credential": credential},
            headers=csrf_headers(self._http, self._settings.security),
        )

    async def sign_out(self) -> None:
        await self._clear_meta()
        headers = csrf_headers(self._http, self._settings.security)
        if headers is None:
            return
        try:
            await self._http.post(f"/api/auth/{self.name}/logout", headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("google_logout_request_failed", error=str(exc))

    def get_metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            display_name="Google",
            icon="mdi-google",
            widget="google-signin",
            configured=bool(self._settings.google.client_id),
            supports_linking=True,
        )

    # ── Backend calls ────────────────────────────────────────
    async def _refresh(self) -> dict[str, Any]:
        headers = csrf_headers(self._http, self._settings.security)
        if headers is None:
            raise TokenRefreshError("Missing CSRF token for refresh")

        response = await self._http.post(
            f"/api/auth/{self.name}/refresh",
            headers=headers,
            timeout=self._settings.timeouts.token_refresh,
        )
        response.raise_for_status()
        data = response.json()
        if not data.get("access_token"):
            raise TokenRefreshError("Refresh response did not include an access token")

        expires_in = data.get("expires_in") or _DEFAULT_EXPIRES_IN_S
        return {
            "access_token": data["access_token"],
            "expires_in": expires_in,
            "expires_at": self._clock() + float(expires_in),
        }

    async def _fetch_profile(self, token: str) -> dict[str, Any]:
        response = await self._http.get(
            self._settings.profile_endpoint,
            headers={"Authorization": f"Bearer {token}"},
            timeout=self._settings.timeouts.profile_fetch,
        )
        response.raise_for_status()
        return response.json()

    # ── Metadata cache ───────────────────────────────────────
    async def _load_meta(self) -> dict[str, Any] | None:
        stored = await self._storage.get(self.meta_key)
        return orjson.loads(stored) if stored else None

    async def _save_meta(self, meta: dict[str, Any]) -> None:
        await self._storage.set(self.meta_key, orjson.dumps(meta).decode())

    async def _clear_meta(self) -> None:
        await self._storage.delete(self.meta_key)
