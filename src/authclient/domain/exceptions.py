"""Auth-client exception hierarchy.

All exceptions inherit from ``AuthClientError`` so callers can catch the
entire family in one clause while still discriminating on subclass.
"""

from __future__ import annotations

from authclient.domain.enums import ErrorCategory


class AuthClientError(Exception):
    """Base class for all auth-client errors."""

    def __init__(self, message: str, *, code: str = "AUTH_CLIENT_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ── Configuration / providers ────────────────────────────────
class ConfigurationError(AuthClientError):
    def __init__(self, message: str) -> None:
        super().__init__(message, code="CONFIGURATION_ERROR")


class ProviderNotFoundError(AuthClientError):
    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Provider {provider!r} not found", code="PROVIDER_NOT_FOUND")


class ProviderNotConfiguredError(AuthClientError):
    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(
            f"Provider {provider!r} is not configured", code="PROVIDER_NOT_CONFIGURED"
        )


class AccountLinkConflictError(AuthClientError):
    """The credential being linked already belongs to another account."""

    def __init__(self, provider: str, message: str = "Account already exists") -> None:
        self.provider = provider
        super().__init__(message, code="EMAIL_EXISTS")


# ── Resilience ───────────────────────────────────────────────
class CircuitOpenError(AuthClientError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Circuit breaker is open for {name}", code="CIRCUIT_OPEN")


class RateLimitedError(AuthClientError):
    def __init__(self, action: str) -> None:
        self.action = action
        super().__init__(
            f"Too many {action} attempts. Please wait before trying again.",
            code="RATE_LIMITED",
        )


class RequestFailedError(AuthClientError):
    """Terminal failure of an intercepted request, annotated for display."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory,
        user_message: str,
        request_id: str | None = None,
        retry_count: int = 0,
        status_code: int | None = None,
    ) -> None:
        self.category = category
        self.user_message = user_message
        self.request_id = request_id
        self.retry_count = retry_count
        self.status_code = status_code
        super().__init__(message, code=f"REQUEST_{category.value.upper()}")


# ── Session ──────────────────────────────────────────────────
class SessionExpiredError(AuthClientError):
    def __init__(self, message: str = "Your session has expired. Please sign in again.") -> None:
        super().__init__(message, code="SESSION_EXPIRED")


class AuthValidationFailedError(AuthClientError):
    """The "who am I" endpoint rejected the current credential."""

    status_code = 401

    def __init__(
        self, message: str = "Authentication validation failed. Please sign in again."
    ) -> None:
        super().__init__(message, code="AUTH_VALIDATION_FAILED")


class TokenRefreshError(AuthClientError):
    def __init__(self, message: str = "Failed to refresh authentication token.") -> None:
        super().__init__(message, code="TOKEN_REFRESH_FAILED")


class AnonymousNotAllowedError(AuthClientError):
    def __init__(self, message: str = "Anonymous sessions are not allowed") -> None:
        super().__init__(message, code="ANONYMOUS_NOT_ALLOWED")


class AnonymousConversionError(AuthClientError):
    def __init__(self, message: str) -> None:
        super().__init__(message, code="ANONYMOUS_CONVERSION_FAILED")
