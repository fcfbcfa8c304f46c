"""Domain entities for the session lifecycle.

``NormalizedSession`` is the canonical value every provider produces from
its own raw session shape. The store and interceptor only ever read this
shape; the raw payload is kept alongside for provider-specific needs.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from authclient.domain.enums import AuthState, StoreErrorType


def parse_expires_at(value: Any) -> float | None:
    """Coerce an ``expires_at`` value (epoch seconds or ISO date) to epoch seconds."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return None
    return None


# ═══════════════════════════════════════════════════════════════
#  Session
# ═══════════════════════════════════════════════════════════════
@dataclass(slots=True)
class NormalizedSession:
    """Canonical session shape shared by all providers."""

    access_token: str | None
    provider: str
    user: dict[str, Any] | None = None
    is_anonymous: bool = False
    provider_id: str | None = None
    expires_at: float | None = None
    refresh_token: str | None = None
    token_type: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token)

    @property
    def auth_state(self) -> AuthState:
        if not self.is_authenticated:
            return AuthState.UNAUTHENTICATED
        return AuthState.ANONYMOUS if self.is_anonymous else AuthState.FULL

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Raw-compatible representation, accepted back by every provider's normalizer."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "expires_at": self.expires_at,
            "provider": self.provider,
            "provider_id": self.provider_id,
            "user": copy.deepcopy(self.user),
            "is_anonymous": self.is_anonymous,
        }

    def clone(self) -> NormalizedSession:
        return copy.deepcopy(self)


# ═══════════════════════════════════════════════════════════════
#  Profile
# ═══════════════════════════════════════════════════════════════
@dataclass(slots=True)
class Profile:
    """Backend user record plus the provider accounts linked to it."""

    user: dict[str, Any]
    linked_providers: dict[str, str] = field(default_factory=dict)
    provider: str | None = None
    provider_id: str | None = None

    @classmethod
    def from_payload(
        cls, payload: dict[str, Any], session: NormalizedSession | None = None
    ) -> Profile:
        user = payload.get("user") or payload
        return cls(
            user=dict(user),
            linked_providers=dict(payload.get("linked_providers") or {}),
            provider=payload.get("provider") or (session.provider if session else None),
            provider_id=payload.get("provider_id") or (session.provider_id if session else None),
        )


# ═══════════════════════════════════════════════════════════════
#  Provider metadata
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class ProviderMetadata:
    """Display descriptor returned by ``AuthProvider.get_metadata``."""

    name: str
    display_name: str
    icon: str
    configured: bool = False
    widget: str | None = None
    supports_linking: bool = False
    is_anonymous_only: bool = False


# ═══════════════════════════════════════════════════════════════
#  Store health / error state
# ═══════════════════════════════════════════════════════════════
@dataclass(slots=True)
class SessionHealth:
    is_healthy: bool = True
    last_check: float | None = None
    next_refresh_time: float | None = None
    failure_count: int = 0


@dataclass(slots=True)
class ErrorState:
    has_error: bool = False
    type: StoreErrorType | None = None
    message: str | None = None
    details: dict[str, Any] | None = None
    timestamp: float | None = None
