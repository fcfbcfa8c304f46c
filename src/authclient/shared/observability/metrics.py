"""Prometheus metrics for the auth session client."""

from __future__ import annotations

from prometheus_client import Counter, Gauge


# ── Session metrics ──────────────────────────────────────────
SESSION_TRANSITIONS_TOTAL = Counter(
    "auth_session_transitions_total",
    "Session state changes applied by the store",
    ["state"],
)

TOKEN_REFRESH_TOTAL = Counter(
    "auth_token_refresh_total",
    "Coordinated token refresh attempts",
    ["provider", "outcome"],
)

PROFILE_FETCH_TOTAL = Counter(
    "auth_profile_fetch_total",
    "Profile fetches against the backend",
    ["outcome"],
)

# ── Request resilience metrics ───────────────────────────────
REQUEST_RETRIES_TOTAL = Counter(
    "auth_request_retries_total",
    "Intercepted request retries",
    ["category"],
)

REQUEST_FAILURES_TOTAL = Counter(
    "auth_request_failures_total",
    "Intercepted requests that failed terminally",
    ["category"],
)

CIRCUIT_BREAKER_STATE = Gauge(
    "auth_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["breaker"],
)

RATE_LIMIT_DENIALS_TOTAL = Counter(
    "auth_rate_limit_denials_total",
    "Actions rejected by the client-side rate limiter",
    ["action"],
)
