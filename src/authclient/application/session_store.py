"""Session store: the single owner of the client's authentication state.

Drives the state machine

    unauthenticated ⇄ authenticated-anonymous ⇄ authenticated-full

through ``set_session``, and orchestrates everything around it: silent
restore on startup, anonymous bootstrap and conversion, profile fetches,
proactive refresh and sign-out. Provider and backend calls run through
``run_with_retry`` with the per-operation circuit breakers; failures are
recorded in ``error`` rather than raised wherever a fallback exists.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

import httpx
import structlog

from authclient.config import AuthSettings
from authclient.domain.entities import (
    ErrorState,
    NormalizedSession,
    Profile,
    SessionHealth,
)
from authclient.domain.enums import AuthState, Capability, ErrorCategory, StoreErrorType
from authclient.domain.exceptions import (
    AnonymousConversionError,
    AnonymousNotAllowedError,
    RateLimitedError,
)
from authclient.shared.errors import ErrorTracker
from authclient.shared.observability.metrics import (
    PROFILE_FETCH_TOTAL,
    SESSION_TRANSITIONS_TOTAL,
)
from authclient.shared.providers.registry import ProviderRegistry
from authclient.shared.resilience.circuit_breaker import CircuitBreakerRegistry
from authclient.shared.resilience.rate_limiter import RateLimiter
from authclient.shared.resilience.retry import categorize_error, run_with_retry, status_of

if TYPE_CHECKING:
    from authclient.shared.middleware.interceptor import AuthInterceptor

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class SessionStore:
    def __init__(
        self,
        settings: AuthSettings,
        registry: ProviderRegistry,
        *,
        http: httpx.AsyncClient,
        breakers: CircuitBreakerRegistry,
        rate_limiter: RateLimiter,
        tracker: ErrorTracker | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._http = http
        self._breakers = breakers
        self._rate_limiter = rate_limiter
        self._tracker = tracker
        self._clock = clock
        self._sleep = sleep
        self._interceptor: AuthInterceptor | None = None

        self._session: NormalizedSession | None = None
        self.profile: Profile | None = None
        self.loading = False
        self.error = ErrorState()
        self.health = SessionHealth()

    # ── Derived state ────────────────────────────────────────
    @property
    def session(self) -> NormalizedSession | None:
        return self._session

    @property
    def token(self) -> str | None:
        return self._session.access_token if self._session else None

    @property
    def user(self) -> dict[str, Any] | None:
        return self._session.user if self._session else None

    @property
    def current_provider(self) -> str | None:
        return self._session.provider if self._session else None

    @property
    def auth_state(self) -> AuthState:
        if self._session is None:
            return AuthState.UNAUTHENTICATED
        return self._session.auth_state

    @property
    def is_authenticated(self) -> bool:
        return self.auth_state != AuthState.UNAUTHENTICATED

    @property
    def is_anonymous(self) -> bool:
        return self.auth_state == AuthState.ANONYMOUS

    @property
    def is_fully_authenticated(self) -> bool:
        return self.auth_state == AuthState.FULL

    @property
    def linked_providers(self) -> dict[str, str]:
        return self.profile.linked_providers if self.profile else {}

    def attach_interceptor(self, interceptor: AuthInterceptor) -> None:
        """Route the store's own backend calls through ``interceptor``."""
        self._interceptor = interceptor

    # ── Error state ──────────────────────────────────────────
    def clear_error(self) -> None:
        self.error = ErrorState()

    def set_error(
        self,
        error_type: StoreErrorType,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.error = ErrorState(
            has_error=True,
            type=error_type,
            message=message,
            details=details,
            timestamp=self._clock(),
        )
        logger.error("auth_store_error", error_type=error_type.value, message=message, **(details or {}))
        if self._tracker is not None:
            self._tracker.report(
                "auth_store",
                {"type": error_type.value, "message": message, "details": details or {}},
            )

    async def _with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        name: str,
        *,
        max_attempts: int | None = None,
    ) -> T:
        self.clear_error()
        timeouts = self._settings.timeouts
        return await run_with_retry(
            operation,
            name,
            max_attempts=max_attempts or self._settings.retry.max_attempts,
            breaker=self._breakers.get(name),
            base_delay=timeouts.retry_delay,
            multiplier=timeouts.backoff_multiplier,
            max_delay=timeouts.max_retry_delay,
            jitter_range=self._settings.retry.jitter_range,
            sleep=self._sleep,
        )

    # ═══════════════════════════════════════════════════════════
    #  Session transitions
    # ═══════════════════════════════════════════════════════════
    async def set_session(
        self,
        raw: dict[str, Any] | NormalizedSession | None,
        provider_name: str | None = None,
    ) -> bool:
        """Adopt ``raw`` as the current session; ``None`` signs out locally.

        Returns ``False`` (and stays unauthenticated) when the provider is
        unknown or cannot normalize the session.
        """
        if raw is None:
            self._clear_local_state()
            self.health = SessionHealth()
            return True

        if isinstance(raw, NormalizedSession):
            raw = raw.to_dict()

        name = provider_name or raw.get("_provider") or self._settings.default_provider or "none"
        provider = self._registry.get(name)
        if provider is None:
            self.set_error(
                StoreErrorType.PROVIDER_NOT_FOUND,
                f"Provider {name!r} not found",
                {"provider": name},
            )
            self._clear_local_state()
            return False

        try:
            normalized = provider.normalize_session(raw)
        except Exception as exc:
            self.set_error(
                StoreErrorType.SESSION_INVALID,
                "Failed to set session",
                {"provider": name, "error": str(exc)},
            )
            return False
        if normalized is None:
            self.set_error(
                StoreErrorType.SESSION_INVALID,
                "Provider returned no usable session",
                {"provider": name},
            )
            self._clear_local_state()
            return False

        self._session = normalized
        await self._cache_session_meta(name, normalized)
        self._apply_auth_header(normalized.access_token)

        now = self._clock()
        self.health = SessionHealth(
            is_healthy=True,
            last_check=now,
            next_refresh_time=(
                normalized.expires_at - self._settings.security.refresh_buffer
                if normalized.expires_at is not None
                else None
            ),
            failure_count=0,
        )
        SESSION_TRANSITIONS_TOTAL.labels(state=normalized.auth_state.value).inc()
        logger.info(
            "session_set",
            provider=name,
            state=normalized.auth_state.value,
            expires_at=normalized.expires_at,
        )
        return True

    async def _cache_session_meta(self, name: str, session: NormalizedSession) -> None:
        try:
            await self._registry.call_method(name, Capability.CACHE_SESSION_META, session)
        except Exception as exc:
            logger.warning("session_meta_cache_failed", provider=name, error=str(exc))

    def _apply_auth_header(self, token: str | None) -> None:
        if token:
            self._http.headers["Authorization"] = f"Bearer {token}"
        else:
            self._http.headers.pop("Authorization", None)

    def _clear_local_state(self) -> None:
        had_session = self._session is not None
        self._session = None
        self.profile = None
        self._apply_auth_header(None)
        if had_session:
            SESSION_TRANSITIONS_TOTAL.labels(state=AuthState.UNAUTHENTICATED.value).inc()

    # ═══════════════════════════════════════════════════════════
    #  Profile
    # ═══════════════════════════════════════════════════════════
    async def fetch_profile(self) -> bool:
        """Refresh ``profile`` from the backend.

        A no-op success while unauthenticated or anonymous. Repeated 401s
        sign the user out; other failures are recorded and degrade health.
        """
        session = self._session
        if session is None or not session.is_authenticated or session.is_anonymous:
            self.clear_error()
            return True

        if not await self._rate_limiter.check("profile"):
            self.set_error(StoreErrorType.RATE_LIMITED, "Too many profile requests. Please wait.")
            return False

        self.loading = True
        try:
            payload = await self._with_retry(self._request_profile, "profile")
            self.profile = Profile.from_payload(payload, session)
            self.health.failure_count = 0
            self.health.is_healthy = True
            PROFILE_FETCH_TOTAL.labels(outcome="success").inc()
            return True
        except Exception as exc:
            PROFILE_FETCH_TOTAL.labels(outcome="failure").inc()
            self.health.failure_count += 1
            threshold = self._settings.profile_failure_threshold
            details = {"failure_count": self.health.failure_count, "error": str(exc)}

            if status_of(exc) == 401:
                self.set_error(
                    StoreErrorType.SESSION_INVALID,
                    self._settings.get_error_message("AUTH_VALIDATION_FAILED"),
                    details,
                )
                if self.health.failure_count >= threshold:
                    logger.warning("profile_auth_failures_exceeded", failures=self.health.failure_count)
                    await self.sign_out()
            else:
                timed_out = categorize_error(exc) == ErrorCategory.TIMEOUT
                self.set_error(
                    StoreErrorType.TIMEOUT if timed_out else StoreErrorType.PROFILE_FETCH_FAILED,
                    self._settings.get_error_message("TIMEOUT")
                    if timed_out
                    else "Failed to load user profile",
                    details,
                )
                if self.health.failure_count >= threshold:
                    self.health.is_healthy = False
            return False
        finally:
            self.loading = False

    async def _request_profile(self) -> dict[str, Any]:
        endpoint = self._settings.profile_endpoint
        timeout = self._settings.timeouts.profile_fetch
        if self._interceptor is not None:
            response = await self._interceptor.request(
                "GET", endpoint, timeout=timeout, no_retry=True
            )
        else:
            response = await self._http.get(endpoint, timeout=timeout)
            response.raise_for_status()
        return response.json()

    # ═══════════════════════════════════════════════════════════
    #  Anonymous sessions
    # ═══════════════════════════════════════════════════════════
    async def start_anonymous_session(self) -> bool:
        if not self._settings.allow_anonymous:
            message = "Anonymous sessions are not allowed"
            self.set_error(StoreErrorType.ANONYMOUS_NOT_ALLOWED, message)
            raise AnonymousNotAllowedError(message)

        preferred = self._settings.anonymous_provider
        candidates = sorted(self._registry.items(), key=lambda item: item[0] != preferred)
        for name, provider in candidates:
            start = provider.capability(Capability.START_ANONYMOUS_SESSION)
            if start is None:
                continue
            try:
                anon = await self._with_retry(start, "anonymous", max_attempts=2)
                if anon and await self.set_session(anon, name):
                    logger.info("anonymous_session_started", provider=name)
                    return True
            except Exception as exc:
                logger.warning("anonymous_session_failed", provider=name, error=str(exc))

        message = "No provider supports anonymous sessions"
        self.set_error(StoreErrorType.ANONYMOUS_NOT_ALLOWED, message)
        raise AnonymousNotAllowedError(message)

    async def convert_anonymous_account(
        self, email: str, password: str, name: str | None = None
    ) -> dict[str, Any]:
        """Upgrade the current anonymous session to a full account."""
        if not self.is_anonymous:
            message = "Current session is not anonymous"
            self.set_error(StoreErrorType.ANONYMOUS_CONVERSION_FAILED, message)
            raise AnonymousConversionError(message)

        if not await self._rate_limiter.check("signup"):
            self.set_error(
                StoreErrorType.RATE_LIMITED,
                "Too many signup attempts. Please wait before trying again.",
            )
            raise RateLimitedError("signup")

        provider = self.current_provider
        try:
            result = await self._with_retry(
                lambda: self._registry.call_method(
                    provider,
                    Capability.CONVERT_ANONYMOUS_ACCOUNT,
                    email,
                    password,
                    {"name": name},
                ),
                "auth",
            )
            if not result:
                raise AnonymousConversionError(
                    f"Provider {provider!r} could not convert the anonymous account"
                )
            if await self.set_session(result, provider):
                await self.fetch_profile()
            logger.info("anonymous_account_converted", provider=provider)
            return result
        except Exception as exc:
            self.set_error(
                StoreErrorType.ANONYMOUS_CONVERSION_FAILED,
                str(exc) or "Failed to convert anonymous account",
                {"provider": provider},
            )
            raise

    # ═══════════════════════════════════════════════════════════
    #  Sign-out / startup / health
    # ═══════════════════════════════════════════════════════════
    async def sign_out(self) -> bool:
        """Sign out everywhere we can; local state is always cleared."""
        provider = self.current_provider
        if provider is not None:
            try:
                await self._with_retry(
                    lambda: self._registry.call_method(provider, Capability.SIGN_OUT),
                    "auth",
                    max_attempts=1,
                )
            except Exception as exc:
                logger.warning("provider_sign_out_failed", provider=provider, error=str(exc))
                self.set_error(
                    StoreErrorType.SIGNOUT_FAILED,
                    "Provider sign-out failed; local session cleared",
                    {"provider": provider, "error": str(exc)},
                )

        self._clear_local_state()
        self.health = SessionHealth()
        self._breakers.reset_all()
        logger.info("signed_out", provider=provider)
        return True

    async def initialize(self) -> None:
        """Restore the first usable stored session, in provider registration order."""
        self.loading = True
        try:
            for name, provider in self._registry.items():
                try:
                    restored = await self._with_retry(
                        provider.get_stored_session, "auth", max_attempts=1
                    )
                    if not restored:
                        continue
                    if not await self.set_session(restored, name):
                        continue
                    if not self.is_anonymous and not await self.fetch_profile():
                        if self._session is None or self._profile_unrecoverable():
                            logger.warning("stored_session_rejected", provider=name)
                            await self.sign_out()
                            continue
                    logger.info("session_restored", provider=name, state=self.auth_state.value)
                    return
                except Exception as exc:
                    logger.warning("session_restore_failed", provider=name, error=str(exc))

            if self._session is None and self._settings.auto_start_anonymous:
                try:
                    await self.start_anonymous_session()
                except Exception as exc:
                    logger.warning("auto_anonymous_session_failed", error=str(exc))
        except Exception as exc:
            self.set_error(
                StoreErrorType.INITIALIZATION_FAILED,
                "Failed to initialize authentication",
                {"error": str(exc)},
            )
        finally:
            self.loading = False

    def _profile_unrecoverable(self) -> bool:
        return (
            self.error.type == StoreErrorType.SESSION_INVALID
            or self.health.failure_count >= self._settings.profile_failure_threshold
        )

    async def check_session_health(self) -> bool:
        """Proactively refresh near expiry and periodically re-validate the profile."""
        if not self.is_authenticated:
            return True

        now = self._clock()
        provider = self.current_provider
        next_refresh = self.health.next_refresh_time
        if next_refresh is not None and now >= next_refresh:
            current = self._session
            try:
                refreshed = await self._with_retry(
                    lambda: self._registry.call_method(
                        provider, Capability.REFRESH_SESSION, current
                    ),
                    "token_refresh",
                    max_attempts=1,
                )
                if refreshed:
                    await self.set_session(refreshed, provider)
            except Exception as exc:
                self.health.is_healthy = False
                self.health.failure_count += 1
                logger.warning("proactive_refresh_failed", provider=provider, error=str(exc))
                return False

        last_check = self.health.last_check
        if last_check is None or now - last_check > self._settings.security.validate_session_interval:
            await self.fetch_profile()
            self.health.last_check = now

        return self.health.is_healthy
