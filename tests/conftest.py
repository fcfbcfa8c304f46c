"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import os
import sys
from dataclasses import dataclass
from typing import Any, Callable

import httpx
import pytest

# Add src to path so imports work
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from authclient.adapters.storage import MemoryStorageAdapter
from authclient.application.session_store import SessionStore
from authclient.config import AuthSettings, get_settings
from authclient.domain.entities import NormalizedSession, ProviderMetadata, parse_expires_at
from authclient.ports.outbound import AuthProvider
from authclient.shared.middleware import AuthInterceptor
from authclient.shared.providers.registry import ProviderRegistry
from authclient.shared.resilience import CircuitBreakerRegistry, RateLimiter

BASE_URL = "http://api.test"


async def no_sleep(_delay: float) -> None:
    return None


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(AuthProvider):
    """Scriptable provider recording how the core drives it."""

    def __init__(
        self,
        name: str,
        *,
        stored: dict[str, Any] | None = None,
        new_token: str = "new-token",
    ) -> None:
        self.name = name
        self.stored = stored
        self.new_token = new_token
        self.refresh_succeeds = True
        self.refresh_delay = 0.0
        self.refresh_calls = 0
        self.stored_calls = 0
        self.sign_out_calls = 0
        self.sign_out_error: Exception | None = None
        self.stored_error: Exception | None = None

    def normalize_session(self, raw: dict[str, Any]) -> NormalizedSession | None:
        if not raw:
            return None
        return NormalizedSession(
            access_token=raw.get("access_token"),
            provider=self.name,
            user=raw.get("user"),
            is_anonymous=bool(raw.get("is_anonymous", False)),
            provider_id=raw.get("provider_id"),
            expires_at=parse_expires_at(raw.get("expires_at")),
            raw=raw,
        )

    async def get_stored_session(self) -> dict[str, Any] | None:
        self.stored_calls += 1
        if self.stored_error is not None:
            raise self.stored_error
        return self.stored

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        if self.sign_out_error is not None:
            raise self.sign_out_error

    async def handle_token_expiry(self, store: SessionStore, request: httpx.Request) -> httpx.Request | None:
        self.refresh_calls += 1
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if not self.refresh_succeeds:
            return None
        session = {**store.session.to_dict(), "access_token": self.new_token}
        await store.set_session(session, self.name)
        request.headers["Authorization"] = f"Bearer {self.new_token}"
        return request

    def get_metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            display_name=self.name.title(),
            icon="mdi-account",
            configured=True,
        )


def make_settings(**overrides: Any) -> AuthSettings:
    base: dict[str, Any] = {
        "providers": ["local", "oauth"],
        "default_provider": "local",
        "timeouts": {"retry_delay": 0.0, "max_retry_delay": 0.0, "token_refresh": 1.0},
        "retry": {"jitter_range": 0.0},
        "google": {"client_id": "test-client-id"},
    }
    base.update(overrides)
    return get_settings(**base)


def profile_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/auth/me":
        return httpx.Response(
            200,
            json={
                "user": {"id": "u-1", "email": "ada@example.com", "name": "Ada"},
                "provider": "oauth",
                "provider_id": "ext-1",
                "linked_providers": {"google": "g-1"},
            },
        )
    return httpx.Response(200, json={"ok": True})


@dataclass
class Harness:
    store: SessionStore
    registry: ProviderRegistry
    http: httpx.AsyncClient
    breakers: CircuitBreakerRegistry
    storage: MemoryStorageAdapter
    settings: AuthSettings
    interceptor: AuthInterceptor | None = None


@pytest.fixture
def build_harness() -> Callable[..., Harness]:
    """Build a store (and optionally an interceptor) around the given providers."""

    def _build(
        providers: list[AuthProvider],
        *,
        handler: Callable[[httpx.Request], Any] = profile_handler,
        settings: AuthSettings | None = None,
        clock: Callable[[], float] | None = None,
        with_interceptor: bool = False,
        sleep: Callable[[float], Any] = no_sleep,
    ) -> Harness:
        names = [p.name for p in providers]
        settings = settings or make_settings(providers=names, default_provider=names[0])
        http = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
        storage = MemoryStorageAdapter()
        registry = ProviderRegistry(list(providers))
        breakers = CircuitBreakerRegistry(settings.circuit_breaker)
        store = SessionStore(
            settings,
            registry,
            http=http,
            breakers=breakers,
            rate_limiter=RateLimiter(storage, settings.rate_limiting, clock=clock or FakeClock()),
            clock=clock or FakeClock(),
            sleep=no_sleep,
        )
        harness = Harness(store, registry, http, breakers, storage, settings)
        if with_interceptor:
            harness.interceptor = AuthInterceptor(
                store,
                registry,
                client=http,
                settings=settings,
                breakers=breakers,
                sleep=sleep,
            )
            store.attach_interceptor(harness.interceptor)
        return harness

    return _build
