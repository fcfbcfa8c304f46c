"""Claims decoding and user-shape normalization shared by the providers.

Tokens are decoded *without* signature verification: the backend verifies
every bearer token it receives, the client only reads display fields.
"""

from __future__ import annotations

from typing import Any

import structlog
from jose import JWTError, jwt

logger = structlog.get_logger(__name__)

_NAME_KEYS = ("full_name", "name", "display_name")
_AVATAR_KEYS = ("avatar_url", "picture", "profile_picture")


def decode_claims(token: str | None) -> dict[str, Any] | None:
    """Unverified JWT payload, or ``None`` if ``token`` is not a JWT."""
    if not token:
        return None
    try:
        return jwt.get_unverified_claims(token)
    except JWTError:
        return None


def _first(sources: list[dict[str, Any]], keys: tuple[str, ...]) -> str | None:
    for source in sources:
        for key in keys:
            value = source.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def resolve_display_name(metadata: dict[str, Any], claims: dict[str, Any], email: str | None) -> str:
    """full name → name → display name → token name → email local-part → "User"."""
    name = _first([metadata], _NAME_KEYS) or _first([claims], ("name",))
    if name:
        return name
    if email:
        return email.split("@", 1)[0]
    return "User"


def resolve_avatar_url(metadata: dict[str, Any], claims: dict[str, Any]) -> str | None:
    return _first([metadata], _AVATAR_KEYS) or _first([claims], ("picture",))


def user_from_claims(claims: dict[str, Any]) -> dict[str, Any]:
    """Canonical user dict from a hosted-auth access token payload."""
    metadata = claims.get("user_metadata") or {}
    email = claims.get("email")
    return {
        "id": claims.get("sub"),
        "email": email,
        "name": resolve_display_name(metadata, claims, email),
        "avatar_url": resolve_avatar_url(metadata, claims),
        "is_anonymous": bool(claims.get("is_anonymous", False)),
        "user_metadata": metadata,
        "app_metadata": claims.get("app_metadata") or {},
    }


def user_from_record(user: dict[str, Any]) -> dict[str, Any]:
    """Canonical user dict from an SDK/backend user record.

    Records that are already canonical (carry ``name``) pass through.
    """
    metadata = user.get("user_metadata") or {}
    email = user.get("email")
    return {
        **user,
        "id": user.get("id"),
        "email": email,
        "name": user.get("name") or resolve_display_name(metadata, {}, email),
        "avatar_url": user.get("avatar_url") or resolve_avatar_url(metadata, {}),
        "is_anonymous": bool(user.get("is_anonymous", False)),
    }


def user_from_google_id_token(claims: dict[str, Any]) -> dict[str, Any]:
    email = claims.get("email")
    return {
        "id": claims.get("sub"),
        "email": email,
        "name": resolve_display_name({}, claims, email),
        "avatar_url": claims.get("picture"),
        "email_verified": bool(claims.get("email_verified", False)),
        "is_anonymous": False,
    }
