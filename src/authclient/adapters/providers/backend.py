"""Helpers for providers that relay through the application backend."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from authclient.config import SecuritySettings
from authclient.domain.exceptions import AccountLinkConflictError

logger = structlog.get_logger(__name__)


def csrf_headers(http: httpx.AsyncClient, security: SecuritySettings) -> dict[str, str] | None:
    """Echo the refresh CSRF cookie back as a header, or ``None`` when the cookie is absent."""
    token = http.cookies.get(security.csrf_cookie)
    if not token:
        return None
    return {security.csrf_header: token}


async def link_credential(
    http: httpx.AsyncClient,
    provider: str,
    payload: dict[str, Any],
    *,
    headers: dict[str, str] | None = None,
) -> dict[str, Any]:
    """POST a secondary credential to ``/api/auth/{provider}/link``.

    Raises ``AccountLinkConflictError`` when the backend reports the
    credential already belongs to another account.
    """
    response = await http.post(f"/api/auth/{provider}/link", json=payload, headers=headers)
    if 400 <= response.status_code < 500:
        try:
            body = response.json()
        except ValueError:
            body = {}
        detail = body.get("detail", body) if isinstance(body, dict) else {}
        code = detail.get("code") if isinstance(detail, dict) else None
        if code == "EMAIL_EXISTS":
            message = detail.get("message") or "Account already exists"
            logger.warning("account_link_conflict", provider=provider)
            raise AccountLinkConflictError(provider, message)
    response.raise_for_status()
    logger.info("account_linked", provider=provider)
    return response.json()
