"""Auth session client configuration."""

from __future__ import annotations

import enum
import warnings
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TokenStorage(str, enum.Enum):
    MEMORY = "memory"
    SESSION = "session"
    LOCAL = "local"


DEFAULT_MESSAGES: dict[str, str] = {
    "NETWORK_ERROR": "Network connection failed. Please check your internet connection.",
    "TIMEOUT": "Request timed out. Please try again.",
    "RATE_LIMIT": "Too many requests. Please wait a moment before trying again.",
    "INVALID_CREDENTIALS": "Invalid email or password.",
    "EMAIL_NOT_CONFIRMED": "Please confirm your email address before signing in.",
    "EMAIL_EXISTS": "An account with this email already exists.",
    "WEAK_PASSWORD": "Password must be at least 8 characters long.",
    "SESSION_EXPIRED": "Your session has expired. Please sign in again.",
    "TOKEN_REFRESH_FAILED": "Failed to refresh authentication token.",
    "AUTH_FAILED": "Authentication failed. Please sign in again.",
    "AUTH_VALIDATION_FAILED": "Authentication validation failed. Please sign in again.",
    "PROVIDER_NOT_CONFIGURED": "This sign-in method is not configured.",
    "SDK_LOAD_FAILED": "Failed to load the authentication service. Please try again.",
    "UNKNOWN_ERROR": "An unexpected error occurred. Please try again.",
    "SERVER_ERROR": "Server error occurred. Please try again later.",
    "CLIENT_ERROR": "An error occurred. Please try again.",
}


# ── Nested tables ────────────────────────────────────────────
class SupabaseCredentials(BaseModel):
    url: str = ""
    anon_key: str = ""


class GoogleCredentials(BaseModel):
    client_id: str = ""


class TimeoutSettings(BaseModel):
    """Durations in seconds."""

    auth_request: float = 15.0
    token_refresh: float = 10.0
    profile_fetch: float = 8.0
    retry_delay: float = 1.0
    max_retry_delay: float = 30.0
    backoff_multiplier: float = 2.0


class RetrySettings(BaseModel):
    max_attempts: int = 3
    retryable_status_codes: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})
    network_error_retries: int = 2
    jitter_range: float = 0.2
    rate_limit_fixed_delay: float = 5.0
    rate_limit_max_wait: float = 60.0


class RateLimitRule(BaseModel):
    max_requests: int
    window_seconds: float


class RateLimitSettings(BaseModel):
    enabled: bool = True
    rules: dict[str, RateLimitRule] = Field(
        default_factory=lambda: {
            "login": RateLimitRule(max_requests=5, window_seconds=300),
            "signup": RateLimitRule(max_requests=3, window_seconds=600),
            "password_reset": RateLimitRule(max_requests=3, window_seconds=3600),
            "token_refresh": RateLimitRule(max_requests=10, window_seconds=60),
        }
    )


class CircuitBreakerSettings(BaseModel):
    enabled: bool = True
    threshold: int = 5
    timeout: float = 60.0
    half_open_requests: int = 3


class SecuritySettings(BaseModel):
    csrf_cookie: str = "refresh_csrf"
    csrf_header: str = "X-CSRF-Token"
    token_storage: TokenStorage | str = TokenStorage.MEMORY
    validate_session_interval: float = 60.0
    refresh_buffer: float = 60.0
    redis_url: str = ""

    @model_validator(mode="after")
    def _disallow_local_storage(self) -> SecuritySettings:
        if self.token_storage in (TokenStorage.LOCAL, TokenStorage.LOCAL.value):
            warnings.warn(
                "token_storage 'local' is not permitted, falling back to 'session'",
                UserWarning,
                stacklevel=2,
            )
            self.token_storage = TokenStorage.SESSION
        return self


class ErrorTrackingSettings(BaseModel):
    enabled: bool = False
    endpoint: str = ""
    api_key: str = ""


# ── Root settings ────────────────────────────────────────────
class AuthSettings(BaseSettings):
    """Centralised, validated configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Backend ──────────────────────────────────────────────
    api_base_url: str = "http://localhost:8000"
    profile_endpoint: str = "/api/auth/me"
    validation_path: str = "/auth/me"

    # ── Providers ────────────────────────────────────────────
    providers: list[str] = Field(default_factory=lambda: ["local"])
    default_provider: str = "local"
    anonymous_provider: str = "local"
    allow_anonymous: bool = False
    auto_start_anonymous: bool = False
    supabase: SupabaseCredentials = Field(default_factory=SupabaseCredentials)
    google: GoogleCredentials = Field(default_factory=GoogleCredentials)

    # ── Resilience ───────────────────────────────────────────
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    rate_limiting: RateLimitSettings = Field(default_factory=RateLimitSettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    profile_failure_threshold: int = 3

    # ── Security ─────────────────────────────────────────────
    security: SecuritySettings = Field(default_factory=SecuritySettings)

    # ── Observability ────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool = False
    error_tracking: ErrorTrackingSettings = Field(default_factory=ErrorTrackingSettings)
    messages: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_MESSAGES))

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator("providers", mode="before")
    @classmethod
    def _split_providers(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    @field_validator("messages")
    @classmethod
    def _merge_default_messages(cls, v: dict[str, str]) -> dict[str, str]:
        return {**DEFAULT_MESSAGES, **v}

    @model_validator(mode="after")
    def _validate_providers(self) -> AuthSettings:
        if not self.providers:
            raise ValueError("At least one auth provider must be configured")
        if self.default_provider not in self.providers:
            raise ValueError(
                f"Default provider {self.default_provider!r} is not in providers list"
            )
        if "supabase" in self.providers and not (self.supabase.url and self.supabase.anon_key):
            raise ValueError("Supabase provider requires url and anon_key")
        if "google" in self.providers and not self.google.client_id:
            raise ValueError("Google provider requires client_id")
        return self

    def get_error_message(self, code: str, fallback: str | None = None) -> str:
        return self.messages.get(code) or fallback or self.messages["UNKNOWN_ERROR"]


def get_settings(**overrides: Any) -> AuthSettings:
    """Factory that allows test-time overrides."""
    return AuthSettings(**overrides)
