"""Error presentation and best-effort error reporting.

``user_message_for`` picks the human-readable message attached to terminal
request failures. ``ErrorTracker`` ships failure details to an external
tracking endpoint in the background; it never raises into, or delays, the
flow that reported the error.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Mapping

import httpx
import structlog

from authclient.config import AuthSettings, ErrorTrackingSettings
from authclient.domain.enums import ErrorCategory
from authclient.shared.resilience.retry import response_of

logger = structlog.get_logger(__name__)

_CATEGORY_MESSAGE_CODES: dict[ErrorCategory, str] = {
    ErrorCategory.NETWORK: "NETWORK_ERROR",
    ErrorCategory.TIMEOUT: "TIMEOUT",
    ErrorCategory.RATE_LIMIT: "RATE_LIMIT",
    ErrorCategory.SERVER: "SERVER_ERROR",
    ErrorCategory.AUTH: "AUTH_FAILED",
}

_SENSITIVE_HEADERS = frozenset({"authorization", "cookie", "x-api-key", "x-csrf-token"})


def user_message_for(
    category: ErrorCategory, error: BaseException, settings: AuthSettings
) -> str:
    code = _CATEGORY_MESSAGE_CODES.get(category)
    if code is not None:
        return settings.get_error_message(code)

    response = response_of(error)
    if response is not None:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("message"), str):
            return body["message"]
    return settings.get_error_message("CLIENT_ERROR")


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {
        k: ("[redacted]" if k.lower() in _SENSITIVE_HEADERS else v) for k, v in headers.items()
    }


# ═══════════════════════════════════════════════════════════════
#  Error tracking side channel
# ═══════════════════════════════════════════════════════════════
class ErrorTracker:
    def __init__(
        self,
        settings: ErrorTrackingSettings,
        *,
        http: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._settings = settings
        self._owns_client = http is None
        self._http = http or httpx.AsyncClient(timeout=timeout)
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def enabled(self) -> bool:
        return self._settings.enabled and bool(self._settings.endpoint)

    def report(self, component: str, details: dict[str, Any]) -> None:
        """Schedule a report; returns immediately."""
        if not self.enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("error_tracking_skipped_no_loop", component=component)
            return

        payload = {"component": component, "timestamp": time.time(), **details}
        task = loop.create_task(self._send(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, payload: dict[str, Any]) -> None:
        try:
            await self._http.post(
                self._settings.endpoint,
                json=payload,
                headers={"X-API-Key": self._settings.api_key},
            )
        except Exception as exc:
            logger.debug("error_tracking_failed", error=str(exc))

    async def aclose(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._owns_client:
            await self._http.aclose()
