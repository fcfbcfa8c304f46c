"""Outbound request interceptor.

Every request sent through ``AuthInterceptor`` goes through two phases:

1. **Request phase**: stamp bearer/provider headers from the current
   session, a request id, and the retry count on replays.
2. **Failure phase**: a 401 with a live session triggers the coordinated
   token refresh (or, on the "who am I" endpoint, an immediate sign-out);
   other failures are replayed per ``RetryPolicy``; anything left is
   raised as a ``RequestFailedError`` carrying a category and a
   user-facing message.
"""

from __future__ import annotations

import asyncio
import random
import string
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import httpx
import structlog

from authclient.config import AuthSettings
from authclient.domain.enums import Capability, ErrorCategory
from authclient.domain.exceptions import (
    AuthValidationFailedError,
    RequestFailedError,
    SessionExpiredError,
    TokenRefreshError,
)
from authclient.shared.errors import ErrorTracker, redact_headers, user_message_for
from authclient.shared.middleware.refresh import RefreshCoordinator
from authclient.shared.observability.metrics import (
    REQUEST_FAILURES_TOTAL,
    REQUEST_RETRIES_TOTAL,
    TOKEN_REFRESH_TOTAL,
)
from authclient.shared.providers.registry import ProviderRegistry
from authclient.shared.resilience.circuit_breaker import CircuitBreakerRegistry
from authclient.shared.resilience.retry import RetryPolicy, categorize_error, status_of

if TYPE_CHECKING:
    from authclient.application.session_store import SessionStore

logger = structlog.get_logger(__name__)

_CONTEXT_KEY = "authclient.retry_context"
_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_request_id() -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{int(time.time() * 1000)}-{suffix}"


@dataclass(slots=True)
class RetryContext:
    """Per-request bookkeeping, carried in ``request.extensions``."""

    retry_count: int = 0
    request_id: str = field(default_factory=new_request_id)
    skip_auth: bool = False
    no_retry: bool = False
    refreshed: bool = False


def context_of(request: httpx.Request) -> RetryContext:
    ctx = request.extensions.get(_CONTEXT_KEY)
    if ctx is None:
        ctx = RetryContext()
        request.extensions[_CONTEXT_KEY] = ctx
    return ctx


class AuthInterceptor:
    def __init__(
        self,
        store: SessionStore,
        registry: ProviderRegistry,
        *,
        client: httpx.AsyncClient,
        settings: AuthSettings,
        breakers: CircuitBreakerRegistry | None = None,
        policy: RetryPolicy | None = None,
        coordinator: RefreshCoordinator | None = None,
        tracker: ErrorTracker | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._registry = registry
        self._client = client
        self._settings = settings
        self._breakers = breakers
        self._policy = policy or RetryPolicy.from_settings(settings)
        self._refresh = coordinator or RefreshCoordinator()
        self._tracker = tracker
        self._sleep = sleep

    @property
    def coordinator(self) -> RefreshCoordinator:
        return self._refresh

    # ── Public API ───────────────────────────────────────────
    async def request(
        self,
        method: str,
        url: str,
        *,
        skip_auth: bool = False,
        no_retry: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        request = self._client.build_request(method, url, **kwargs)
        request.extensions[_CONTEXT_KEY] = RetryContext(skip_auth=skip_auth, no_retry=no_retry)
        return await self.send(request)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def send(self, request: httpx.Request) -> httpx.Response:
        ctx = context_of(request)
        with structlog.contextvars.bound_contextvars(request_id=ctx.request_id):
            while True:
                self._prepare(request, ctx)
                try:
                    response = await self._client.send(request)
                except httpx.TransportError as exc:
                    error: Exception = exc
                else:
                    if response.is_success or response.is_redirect:
                        if ctx.retry_count:
                            logger.info("request_succeeded_after_retry", retries=ctx.retry_count)
                        return response
                    await response.aread()
                    error = httpx.HTTPStatusError(
                        f"{response.status_code} {response.reason_phrase} for {request.method} {request.url}",
                        request=request,
                        response=response,
                    )

                if self._should_refresh(error, ctx):
                    if self._settings.validation_path in request.url.path:
                        await self._reject_validation_failure(request, error)
                    return await self._refresh_and_replay(request, ctx)

                if self._policy.should_retry(error, ctx.retry_count, no_retry=ctx.no_retry):
                    ctx.retry_count += 1
                    category = categorize_error(error)
                    delay = self._policy.compute_delay(ctx.retry_count, error)
                    REQUEST_RETRIES_TOTAL.labels(category=category.value).inc()
                    logger.warning(
                        "request_retry_scheduled",
                        method=request.method,
                        url=str(request.url),
                        category=category.value,
                        retry=ctx.retry_count,
                        delay_s=round(delay, 3),
                    )
                    await self._sleep(delay)
                    continue

                raise self._finalize(request, ctx, error) from error

    # ── Request phase ────────────────────────────────────────
    def _prepare(self, request: httpx.Request, ctx: RetryContext) -> None:
        token = self._store.token
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
            request.headers["X-Auth-Provider"] = self._store.current_provider or "none"
        else:
            request.headers.pop("Authorization", None)
            request.headers.pop("X-Auth-Provider", None)
        request.headers["X-Request-ID"] = ctx.request_id
        if ctx.retry_count:
            request.headers["X-Retry-Count"] = str(ctx.retry_count)

    # ── Failure phase ────────────────────────────────────────
    def _should_refresh(self, error: Exception, ctx: RetryContext) -> bool:
        return (
            status_of(error) == 401
            and self._store.token is not None
            and not ctx.skip_auth
            and not ctx.refreshed
        )

    async def _reject_validation_failure(self, request: httpx.Request, error: Exception) -> None:
        logger.warning("auth_validation_failed", url=str(request.url))
        self._report("auth_validation_failed", request, error)
        await self._store.sign_out()
        raise AuthValidationFailedError(
            self._settings.get_error_message("AUTH_VALIDATION_FAILED")
        ) from error

    async def _refresh_and_replay(
        self, request: httpx.Request, ctx: RetryContext
    ) -> httpx.Response:
        ctx.refreshed = True
        current = self._store.token
        if current and request.headers.get("Authorization") != f"Bearer {current}":
            # Token rotated while this request was in flight.
            return await self.send(request)

        generation = self._refresh.try_begin_refresh()

        if generation is None:
            waiter = self._refresh.subscribe()
            try:
                token = await waiter
            except Exception as exc:
                raise SessionExpiredError(
                    self._settings.get_error_message("SESSION_EXPIRED")
                ) from exc
            request.headers["Authorization"] = f"Bearer {token}"
            return await self.send(request)

        provider = self._store.current_provider
        logger.info("token_refresh_started", provider=provider, generation=generation)
        try:
            refreshed = await asyncio.wait_for(
                self._run_refresh(provider, request),
                timeout=self._settings.timeouts.token_refresh,
            )
        except asyncio.CancelledError:
            self._refresh.fail_refresh(generation, SessionExpiredError())
            raise
        except Exception as exc:
            self._refresh.fail_refresh(generation, SessionExpiredError())
            TOKEN_REFRESH_TOTAL.labels(provider=provider or "none", outcome="failure").inc()
            logger.warning("token_refresh_failed", provider=provider, error=str(exc) or type(exc).__name__)
            self._report("token_refresh_failed", request, exc)
            await self._store.sign_out()
            raise SessionExpiredError(
                self._settings.get_error_message("SESSION_EXPIRED")
            ) from exc

        token = self._store.token
        if token is None or not self._refresh.complete_refresh(generation, token):
            self._refresh.fail_refresh(generation, SessionExpiredError())
            raise SessionExpiredError(self._settings.get_error_message("SESSION_EXPIRED"))

        TOKEN_REFRESH_TOTAL.labels(provider=provider or "none", outcome="success").inc()
        logger.info("token_refresh_succeeded", provider=provider, generation=generation)
        refreshed.extensions[_CONTEXT_KEY] = ctx
        return await self.send(refreshed)

    async def _run_refresh(self, provider: str | None, request: httpx.Request) -> httpx.Request:
        async def attempt() -> httpx.Request:
            refreshed = await self._registry.call_method(
                provider, Capability.HANDLE_TOKEN_EXPIRY, self._store, request
            )
            if refreshed is None:
                raise TokenRefreshError()
            return refreshed

        breaker = self._breakers.get("token_refresh") if self._breakers else None
        if breaker is not None:
            return await breaker.execute(attempt)
        return await attempt()

    def _finalize(
        self, request: httpx.Request, ctx: RetryContext, error: Exception
    ) -> RequestFailedError:
        category = categorize_error(error)
        REQUEST_FAILURES_TOTAL.labels(category=category.value).inc()
        logger.error(
            "request_failed",
            method=request.method,
            url=str(request.url),
            category=category.value,
            status=status_of(error),
            retries=ctx.retry_count,
        )
        if category not in (ErrorCategory.CLIENT, ErrorCategory.AUTH):
            self._report("request_failed", request, error)
        return RequestFailedError(
            str(error) or type(error).__name__,
            category=category,
            user_message=user_message_for(category, error, self._settings),
            request_id=ctx.request_id,
            retry_count=ctx.retry_count,
            status_code=status_of(error),
        )

    def _report(self, component: str, request: httpx.Request, error: BaseException) -> None:
        if self._tracker is None:
            return
        self._tracker.report(
            component,
            {
                "message": str(error),
                "method": request.method,
                "url": str(request.url),
                "status": status_of(error),
                "headers": redact_headers(request.headers),
            },
        )
