"""Domain enumerations for the auth session client."""

from __future__ import annotations

import enum


class ErrorCategory(str, enum.Enum):
    """Classification of a failed outbound request."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    CLIENT = "client"
    SERVER = "server"
    UNKNOWN = "unknown"


class StoreErrorType(str, enum.Enum):
    """Failure kinds recorded by the session store."""

    SESSION_INVALID = "session_invalid"
    PROFILE_FETCH_FAILED = "profile_fetch_failed"
    PROVIDER_NOT_FOUND = "provider_not_found"
    ANONYMOUS_NOT_ALLOWED = "anonymous_not_allowed"
    ANONYMOUS_CONVERSION_FAILED = "anonymous_conversion_failed"
    SIGNOUT_FAILED = "signout_failed"
    INITIALIZATION_FAILED = "initialization_failed"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"


class CircuitState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class AuthState(str, enum.Enum):
    """Session lifecycle as seen by callers."""

    UNAUTHENTICATED = "unauthenticated"
    ANONYMOUS = "authenticated_anonymous"
    FULL = "authenticated_full"


class Capability(str, enum.Enum):
    """Named provider capabilities, matching the ``AuthProvider`` method names."""

    NORMALIZE_SESSION = "normalize_session"
    GET_STORED_SESSION = "get_stored_session"
    SIGN_OUT = "sign_out"
    HANDLE_TOKEN_EXPIRY = "handle_token_expiry"
    GET_METADATA = "get_metadata"
    START_ANONYMOUS_SESSION = "start_anonymous_session"
    CONVERT_ANONYMOUS_ACCOUNT = "convert_anonymous_account"
    CACHE_SESSION_META = "cache_session_meta"
    REFRESH_SESSION = "refresh_session"
    LINK_ACCOUNT = "link_account"
