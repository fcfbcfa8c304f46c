"""Client-side authentication session manager.

Unifies anonymous, OAuth and backend-issued sessions behind one normalized
session model and wraps outbound HTTP calls with coordinated token refresh,
retry/backoff, rate limiting and circuit breaking.
"""

from typing import Any

from authclient.application.linking import LinkingSnapshot
from authclient.application.session_store import SessionStore
from authclient.client import AuthClient, build_providers
from authclient.config import AuthSettings, get_settings
from authclient.domain.entities import NormalizedSession, Profile, ProviderMetadata
from authclient.domain.enums import AuthState, Capability, ErrorCategory, StoreErrorType
from authclient.ports.outbound import AuthProvider, StoragePort
from authclient.shared.middleware import AuthInterceptor

__version__ = "0.1.0"


def configure(**options: Any) -> AuthClient:
    """Shortcut for ``AuthClient.configure``."""
    return AuthClient.configure(**options)


__all__ = [
    "AuthClient",
    "AuthInterceptor",
    "AuthProvider",
    "AuthSettings",
    "AuthState",
    "Capability",
    "ErrorCategory",
    "LinkingSnapshot",
    "NormalizedSession",
    "Profile",
    "ProviderMetadata",
    "SessionStore",
    "StoragePort",
    "StoreErrorType",
    "build_providers",
    "configure",
    "get_settings",
]
