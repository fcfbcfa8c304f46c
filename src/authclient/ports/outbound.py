"""Outbound ports: interfaces that providers and storage adapters must implement.

The session store and interceptor depend only on these abstractions, never
on a concrete provider SDK or storage backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol

import httpx

from authclient.domain.entities import NormalizedSession, ProviderMetadata
from authclient.domain.enums import Capability

if TYPE_CHECKING:
    from authclient.application.session_store import SessionStore


# ═══════════════════════════════════════════════════════════════
#  Provider port
# ═══════════════════════════════════════════════════════════════
class AuthProvider(ABC):
    """Capability set implementing authentication for one credential source.

    Required capabilities are abstract methods. Optional capabilities are
    declared here as ``None``; a provider that supports one overrides the
    attribute with a method. Callers look them up through ``capability()``
    and branch on ``None`` instead of probing attributes themselves.
    """

    name: str

    @abstractmethod
    def normalize_session(self, raw: dict[str, Any]) -> NormalizedSession | None: ...

    @abstractmethod
    async def get_stored_session(self) -> dict[str, Any] | None:
        """Restore a persisted session silently. Must return ``None`` on any failure."""

    @abstractmethod
    async def sign_out(self) -> None: ...

    @abstractmethod
    async def handle_token_expiry(
        self, store: SessionStore, request: httpx.Request
    ) -> httpx.Request | None:
        """Refresh the credential and return ``request`` with a fresh bearer header.

        Returns ``None`` instead of raising when the refresh fails.
        """

    @abstractmethod
    def get_metadata(self) -> ProviderMetadata: ...

    # ── Optional capabilities ────────────────────────────────
    start_anonymous_session: Callable[[], Awaitable[dict[str, Any] | None]] | None = None
    convert_anonymous_account: Callable[..., Awaitable[dict[str, Any] | None]] | None = None
    cache_session_meta: Callable[[NormalizedSession], Awaitable[None]] | None = None
    refresh_session: Callable[[NormalizedSession], Awaitable[dict[str, Any] | None]] | None = None
    link_account: Callable[..., Awaitable[dict[str, Any]]] | None = None

    def capability(self, name: Capability | str) -> Callable[..., Any] | None:
        method = getattr(self, Capability(name).value, None)
        return method if callable(method) else None

    def supports(self, name: Capability | str) -> bool:
        return self.capability(name) is not None


# ═══════════════════════════════════════════════════════════════
#  Storage port
# ═══════════════════════════════════════════════════════════════
class StoragePort(ABC):
    """Key-value persistence for provider caches and rate-limit windows."""

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...


# ═══════════════════════════════════════════════════════════════
#  Third-party auth SDK
# ═══════════════════════════════════════════════════════════════
class SdkAuthPort(Protocol):
    """The subset of an async hosted-auth SDK client (e.g. supabase ``auth``) we use.

    Session and user objects may be plain dicts or pydantic models.
    """

    async def get_session(self) -> Any: ...

    async def refresh_session(self, refresh_token: str | None = None) -> Any: ...

    async def sign_out(self) -> None: ...

    async def sign_in_with_password(self, credentials: dict[str, Any]) -> Any: ...

    async def sign_up(self, credentials: dict[str, Any]) -> Any: ...

    async def update_user(self, attributes: dict[str, Any]) -> Any: ...
