"""Composition root: wires providers, resilience, store and interceptor.

Providers are constructed explicitly from the configured allowlist (or
passed in by the caller) and registered in that order, which is also the
order ``initialize`` tries them in.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Sequence

import httpx
import structlog
from pydantic import ValidationError

from authclient.adapters.providers import (
    GoogleAuthProvider,
    LocalAuthProvider,
    SupabaseAuthProvider,
)
from authclient.adapters.storage import resolve_token_storage
from authclient.application.linking import (
    LinkingSnapshot,
    create_linking_snapshot,
    restore_linking_snapshot,
)
from authclient.application.session_store import SessionStore
from authclient.config import AuthSettings, get_settings
from authclient.domain.entities import ProviderMetadata
from authclient.domain.enums import Capability
from authclient.domain.exceptions import (
    AuthClientError,
    ConfigurationError,
    ProviderNotFoundError,
)
from authclient.ports.outbound import AuthProvider, SdkAuthPort, StoragePort
from authclient.shared.errors import ErrorTracker
from authclient.shared.middleware import AuthInterceptor
from authclient.shared.observability import configure_logging
from authclient.shared.providers.registry import ProviderRegistry
from authclient.shared.resilience import CircuitBreakerRegistry, RateLimiter

logger = structlog.get_logger(__name__)


def build_providers(
    settings: AuthSettings,
    *,
    http: httpx.AsyncClient,
    storage: StoragePort,
    supabase_auth: SdkAuthPort | None = None,
) -> list[AuthProvider]:
    """Instantiate the built-in providers named in ``settings.providers``, in order."""
    providers: list[AuthProvider] = []
    for name in settings.providers:
        if name == "local":
            providers.append(LocalAuthProvider(storage))
        elif name == "google":
            providers.append(GoogleAuthProvider(http, storage, settings))
        elif name == "supabase":
            providers.append(SupabaseAuthProvider(supabase_auth, http, settings))
        else:
            logger.warning("unknown_provider_skipped", provider=name)
    return providers


class AuthClient:
    """Facade exposing the session lifecycle to the application layer."""

    def __init__(
        self,
        settings: AuthSettings | None = None,
        *,
        http: httpx.AsyncClient | None = None,
        storage: StoragePort | None = None,
        provider_instances: Sequence[AuthProvider] | None = None,
        supabase_auth: SdkAuthPort | None = None,
        tracker: ErrorTracker | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or get_settings()
        s = self.settings

        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            base_url=s.api_base_url, timeout=s.timeouts.auth_request
        )
        self.storage = storage or resolve_token_storage(
            s.security.token_storage, s.security.redis_url
        )
        self.tracker = tracker or ErrorTracker(s.error_tracking)

        self.registry = ProviderRegistry()
        providers = provider_instances
        if providers is None:
            providers = build_providers(
                s, http=self.http, storage=self.storage, supabase_auth=supabase_auth
            )
        for provider in providers:
            self.registry.register(provider.name, provider)
            self.registry.set_configured(
                provider.name,
                provider.name in s.providers and provider.get_metadata().configured,
            )

        self.breakers = CircuitBreakerRegistry(s.circuit_breaker)
        self.rate_limiter = RateLimiter(self.storage, s.rate_limiting, clock=clock)
        self.store = SessionStore(
            s,
            self.registry,
            http=self.http,
            breakers=self.breakers,
            rate_limiter=self.rate_limiter,
            tracker=self.tracker,
            clock=clock,
        )
        self.interceptor: AuthInterceptor | None = None
        logger.info("auth_client_configured", providers=self.registry.list())

    @classmethod
    def configure(cls, **options: Any) -> AuthClient:
        """Build a client from configuration options.

        Collaborators (``http``, ``storage``, ``provider_instances``,
        ``supabase_auth``, ``tracker``, ``clock``) are passed through; everything
        else, including the ``providers`` allowlist, is validated as
        ``AuthSettings``. Logging is configured from the validated settings.
        """
        collaborators = {
            key: options.pop(key)
            for key in (
                "http",
                "storage",
                "provider_instances",
                "supabase_auth",
                "tracker",
                "clock",
            )
            if key in options
        }
        try:
            settings = get_settings(**options)
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc
        configure_logging(settings.log_level, settings.json_logs)
        return cls(settings, **collaborators)

    # ── Wiring ───────────────────────────────────────────────
    def setup_interceptor(self) -> AuthInterceptor:
        if self.interceptor is None:
            self.interceptor = AuthInterceptor(
                self.store,
                self.registry,
                client=self.http,
                settings=self.settings,
                breakers=self.breakers,
                tracker=self.tracker,
            )
            self.store.attach_interceptor(self.interceptor)
        return self.interceptor

    def get_all_provider_metadata(self) -> list[ProviderMetadata]:
        return self.registry.get_all_metadata()

    # ── Session lifecycle ────────────────────────────────────
    async def initialize(self) -> None:
        await self.store.initialize()

    async def sign_out(self) -> bool:
        return await self.store.sign_out()

    async def start_anonymous_session(self) -> bool:
        return await self.store.start_anonymous_session()

    async def convert_anonymous_account(
        self, email: str, password: str, name: str | None = None
    ) -> dict[str, Any]:
        return await self.store.convert_anonymous_account(email, password, name)

    async def check_session_health(self) -> bool:
        return await self.store.check_session_health()

    # ── Linking ──────────────────────────────────────────────
    def create_linking_snapshot(self) -> LinkingSnapshot:
        return create_linking_snapshot(self.store)

    async def restore_linking_snapshot(
        self, snapshot: LinkingSnapshot | None, linked_provider: str | None = None
    ) -> bool:
        return await restore_linking_snapshot(self.store, snapshot, linked_provider)

    async def link_account(
        self,
        provider: str,
        *args: Any,
        snapshot: LinkingSnapshot | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Link ``provider``'s credential to the active account.

        With a ``snapshot``, the pre-linking session is restored afterwards,
        including when the link call fails; otherwise the profile is
        refreshed to pick up the new link.
        """
        auth_provider = self.registry.get(provider)
        if auth_provider is None:
            raise ProviderNotFoundError(provider)
        link = auth_provider.capability(Capability.LINK_ACCOUNT)
        if link is None:
            raise AuthClientError(
                f"Provider {provider!r} does not support account linking",
                code="LINKING_NOT_SUPPORTED",
            )

        try:
            result = await link(*args, **kwargs)
        except Exception as exc:
            if snapshot is not None:
                logger.warning("account_link_failed_restoring", provider=provider, error=str(exc))
                await restore_linking_snapshot(self.store, snapshot)
            raise
        if snapshot is not None:
            await restore_linking_snapshot(self.store, snapshot, provider)
        else:
            await self.store.fetch_profile()
        return result

    # ── Lifecycle ────────────────────────────────────────────
    async def aclose(self) -> None:
        await self.tracker.aclose()
        await self.storage.close()
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> AuthClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
