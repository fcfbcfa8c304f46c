"""End-to-end flows through AuthClient against a simulated backend."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from authclient import AuthClient, configure
from authclient.adapters.providers import LocalAuthProvider
from authclient.adapters.storage import MemoryStorageAdapter
from authclient.domain.enums import AuthState
from authclient.domain.exceptions import (
    AccountLinkConflictError,
    AuthClientError,
    ConfigurationError,
    ProviderNotFoundError,
)
from tests.conftest import BASE_URL


class FakeBackend:
    """Backend issuing rotating Google access tokens behind a CSRF-protected refresh."""

    def __init__(self) -> None:
        self.refreshes = 0
        self.logouts = 0
        self.links = 0
        self.link_conflict = False
        self.current_token: str | None = None

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        bearer = request.headers.get("Authorization")

        if path == "/api/auth/google/refresh":
            if request.headers.get("X-CSRF-Token") != "csrf-1":
                return httpx.Response(403, json={"detail": "CSRF token mismatch"})
            await asyncio.sleep(0.02)
            self.refreshes += 1
            self.current_token = f"access-{self.refreshes}"
            return httpx.Response(200, json={"access_token": self.current_token, "expires_in": 3600})

        if path == "/api/auth/google/logout":
            self.logouts += 1
            return httpx.Response(200, json={})

        if path == "/api/auth/google/link":
            if self.link_conflict:
                return httpx.Response(
                    409,
                    json={"detail": {"code": "EMAIL_EXISTS", "message": "Email already registered"}},
                )
            self.links += 1
            return httpx.Response(200, json={"linked": True})

        if bearer != f"Bearer {self.current_token}":
            return httpx.Response(401, json={"detail": "Invalid token"})

        if path == "/api/auth/me":
            return httpx.Response(
                200,
                json={
                    "user": {"id": "u-1", "email": "ada@example.com", "name": "Ada"},
                    "provider": "google",
                    "provider_id": "g-sub-1",
                    "linked_providers": {"google": "g-sub-1"},
                },
            )
        return httpx.Response(200, json={"path": path})

    def rotate(self) -> None:
        """Invalidate the current access token server-side."""
        self.current_token = "rotated-server-side"


def build_client(backend: FakeBackend, **options) -> AuthClient:
    http = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(backend))
    http.cookies.set("refresh_csrf", "csrf-1")
    return configure(
        providers=["local", "google"],
        default_provider="local",
        google={"client_id": "google-client-id"},
        allow_anonymous=True,
        timeouts={"retry_delay": 0.0, "max_retry_delay": 0.0},
        retry={"jitter_range": 0.0},
        http=http,
        storage=MemoryStorageAdapter(),
        **options,
    )


class TestAuthClientFlows:
    @pytest.mark.asyncio
    async def test_restore_then_coordinated_refresh(self) -> None:
        backend = FakeBackend()
        client = build_client(backend)

        await client.initialize()
        assert client.store.auth_state == AuthState.FULL
        assert client.store.current_provider == "google"
        assert client.store.token == "access-1"
        assert client.store.session.provider_id == "g-sub-1"
        assert client.store.profile.user["name"] == "Ada"

        interceptor = client.setup_interceptor()
        assert client.setup_interceptor() is interceptor

        backend.rotate()
        responses = await asyncio.gather(*(interceptor.get(f"/api/items/{i}") for i in range(4)))

        assert [r.status_code for r in responses] == [200] * 4
        assert backend.refreshes == 2
        assert client.store.token == "access-2"

    @pytest.mark.asyncio
    async def test_anonymous_bootstrap_when_nothing_stored(self) -> None:
        backend = FakeBackend()
        http = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(backend))
        client = configure(
            providers=["local"],
            default_provider="local",
            allow_anonymous=True,
            auto_start_anonymous=True,
            http=http,
            storage=MemoryStorageAdapter(),
        )

        await client.initialize()

        assert client.store.auth_state == AuthState.ANONYMOUS
        assert client.store.current_provider == "local"

    @pytest.mark.asyncio
    async def test_sign_out_clears_everything(self) -> None:
        backend = FakeBackend()
        client = build_client(backend)
        await client.initialize()

        assert await client.sign_out() is True
        assert client.store.auth_state == AuthState.UNAUTHENTICATED
        assert backend.logouts == 1
        assert "Authorization" not in client.http.headers

    @pytest.mark.asyncio
    async def test_link_account_restores_primary_session(self) -> None:
        backend = FakeBackend()
        client = build_client(backend)
        await client.store.set_session(
            {"access_token": "local-token", "user": {"id": "l-1"}}, "local"
        )
        snapshot = client.create_linking_snapshot()

        result = await client.link_account("google", "google-credential", snapshot=snapshot)

        assert result == {"linked": True}
        assert backend.links == 1
        assert client.store.current_provider == "local"
        assert client.store.token == "local-token"

    @pytest.mark.asyncio
    async def test_failed_link_still_restores_primary_session(self) -> None:
        backend = FakeBackend()
        backend.link_conflict = True
        client = build_client(backend)
        await client.store.set_session(
            {"access_token": "local-token", "user": {"id": "l-1"}}, "local"
        )
        snapshot = client.create_linking_snapshot()
        await client.store.set_session(
            {"access_token": "google-token", "user": {"id": "g-1"}}, "google"
        )

        with pytest.raises(AccountLinkConflictError) as exc_info:
            await client.link_account("google", "google-credential", snapshot=snapshot)

        assert exc_info.value.code == "EMAIL_EXISTS"
        assert backend.links == 0
        assert client.store.current_provider == "local"
        assert client.store.token == "local-token"

    @pytest.mark.asyncio
    async def test_link_account_errors(self) -> None:
        client = build_client(FakeBackend())
        with pytest.raises(ProviderNotFoundError):
            await client.link_account("github", "credential")
        with pytest.raises(AuthClientError) as exc_info:
            await client.link_account("local", "credential")
        assert exc_info.value.code == "LINKING_NOT_SUPPORTED"

    def test_provider_metadata(self) -> None:
        client = build_client(FakeBackend())
        metadata = client.get_all_provider_metadata()
        assert [m.name for m in metadata] == ["local", "google"]
        assert metadata[1].widget == "google-signin"

    def test_invalid_configuration(self) -> None:
        with pytest.raises(ConfigurationError):
            configure(providers=["local", "google"], default_provider="local")

    @pytest.mark.asyncio
    async def test_async_context_manager_closes_owned_http(self) -> None:
        async with AuthClient() as client:
            http = client.http
        assert http.is_closed

    def test_provider_allowlist_builds_registry(self) -> None:
        client = configure(
            providers=["local"],
            default_provider="local",
            storage=MemoryStorageAdapter(),
        )
        assert client.registry.list() == ["local"]
        assert client.settings.providers == ["local"]

    def test_explicit_provider_instances(self) -> None:
        storage = MemoryStorageAdapter()
        client = configure(
            providers=["local"],
            default_provider="local",
            storage=storage,
            provider_instances=[LocalAuthProvider(storage)],
        )
        assert client.registry.list() == ["local"]
        assert [m.name for m in client.get_all_provider_metadata()] == ["local"]
