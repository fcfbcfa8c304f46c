"""Supabase provider: sessions owned by a hosted-auth SDK client.

The SDK client is injected (``SdkAuthPort``); this adapter only maps its
session/user objects into the canonical shape and routes refresh, sign-out
and anonymous conversion through it. Account linking goes through the
application backend.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog

from authclient.adapters.providers.backend import csrf_headers, link_credential
from authclient.adapters.providers.normalizers import (
    decode_claims,
    user_from_claims,
    user_from_record,
)
from authclient.config import AuthSettings
from authclient.domain.entities import NormalizedSession, ProviderMetadata, parse_expires_at
from authclient.domain.exceptions import ProviderNotConfiguredError
from authclient.ports.outbound import AuthProvider, SdkAuthPort

if TYPE_CHECKING:
    from authclient.application.session_store import SessionStore

logger = structlog.get_logger(__name__)


def _as_dict(obj: Any) -> dict[str, Any] | None:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    return dict(vars(obj))


def _session_of(result: Any) -> dict[str, Any] | None:
    """Session dict from an SDK auth response or a bare session object."""
    data = _as_dict(result)
    if data is not None and "session" in data:
        data = _as_dict(data["session"])
    return data


class SupabaseAuthProvider(AuthProvider):
    name = "supabase"

    def __init__(
        self,
        sdk: SdkAuthPort | None,
        http: httpx.AsyncClient,
        settings: AuthSettings,
    ) -> None:
        self._sdk = sdk
        self._http = http
        self._settings = settings

    @property
    def auth(self) -> SdkAuthPort:
        if self._sdk is None:
            raise ProviderNotConfiguredError(self.name)
        return self._sdk

    def normalize_session(self, raw: dict[str, Any]) -> NormalizedSession | None:
        if not raw:
            return None

        token = raw.get("access_token")
        claims = decode_claims(token)
        if claims is not None:
            user = user_from_claims(claims)
            provider_id = claims.get("sub")
            expires_at = parse_expires_at(raw.get("expires_at")) or parse_expires_at(claims.get("exp"))
        else:
            record = _as_dict(raw.get("user"))
            if not record:
                return None
            user = user_from_record(record)
            provider_id = raw.get("provider_id") or user.get("id")
            expires_at = parse_expires_at(raw.get("expires_at"))

        return NormalizedSession(
            access_token=token,
            provider=self.name,
            user=user,
            is_anonymous=bool(user.get("is_anonymous")),
            provider_id=provider_id,
            expires_at=expires_at,
            refresh_token=raw.get("refresh_token"),
            token_type=raw.get("token_type"),
            raw=raw,
        )

    async def get_stored_session(self) -> dict[str, Any] | None:
        try:
            session = _session_of(await self.auth.get_session())
        except Exception as exc:
            logger.info("supabase_session_restore_failed", error=str(exc))
            return None
        if not session or not session.get("access_token"):
            return None
        return {**session, "_provider": self.name}

    async def refresh_session(self, current: NormalizedSession) -> dict[str, Any] | None:
        session = _session_of(await self.auth.refresh_session(current.refresh_token))
        if not session or not session.get("access_token"):
            return None
        return {**session, "_provider": self.name}

    async def handle_token_expiry(
        self, store: SessionStore, request: httpx.Request
    ) -> httpx.Request | None:
        current = store.session
        if current is None:
            return None
        try:
            session = await self.refresh_session(current)
            if session is None or not await store.set_session(session, self.name):
                return None
            request.headers["Authorization"] = f"Bearer {store.token}"
            return request
        except Exception as exc:
            logger.warning("supabase_token_refresh_failed", error=str(exc))
            return None

    async def convert_anonymous_account(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        await self.auth.update_user(
            {"email": email, "password": password, "data": metadata or {}}
        )
        session = _session_of(await self.auth.get_session())
        if not session:
            return None
        logger.info("supabase_anonymous_account_converted")
        return {**session, "_provider": self.name}

    async def sign_in(self, email: str, password: str) -> dict[str, Any] | None:
        session = _session_of(
            await self.auth.sign_in_with_password({"email": email, "password": password})
        )
        return {**session, "_provider": self.name} if session else None

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        session = _session_of(
            await self.auth.sign_up(
                {"email": email, "password": password, "options": {"data": metadata or {}}}
            )
        )
        # Sign-up without a session means email confirmation is pending.
        return {**session, "_provider": self.name} if session else None

    async def link_account(self, access_token: str) -> dict[str, Any]:
        return await link_credential(
            self._http,
            self.name,
            {"access_token": access_token},
            headers=csrf_headers(self._http, self._settings.security),
        )

    async def sign_out(self) -> None:
        await self.auth.sign_out()

    def get_metadata(self) -> ProviderMetadata:
        credentials = self._settings.supabase
        return ProviderMetadata(
            name=self.name,
            display_name="SupaBase",
            icon="mdi-email-outline",
            widget="supabase-email",
            configured=self._sdk is not None and bool(credentials.url and credentials.anon_key),
            supports_linking=True,
        )
