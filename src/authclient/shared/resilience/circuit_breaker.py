"""Circuit breaker: isolates a failing operation class from further calls.

State machine:
    CLOSED    → (failure_count ≥ threshold)          → OPEN
    OPEN      → (now - last_failure_time > timeout)  → HALF_OPEN
    HALF_OPEN → (half_open_requests successes)       → CLOSED
    HALF_OPEN → (any failure)                        → OPEN

The transitions are pure functions over an immutable ``BreakerState`` so
they can be tested without timers; ``CircuitBreaker`` owns the current
state behind a lock and an injectable clock.
"""

from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Iterator, TypeVar

import structlog

from authclient.config import CircuitBreakerSettings
from authclient.domain.enums import CircuitState
from authclient.domain.exceptions import CircuitOpenError
from authclient.shared.observability.metrics import CIRCUIT_BREAKER_STATE

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_STATE_GAUGE_VALUE = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class Outcome(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True, slots=True)
class BreakerState:
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: float | None = None
    half_open_success_count: int = 0


@dataclass(frozen=True, slots=True)
class BreakerPolicy:
    threshold: int = 5
    timeout: float = 60.0
    half_open_requests: int = 3


# ── Transitions ──────────────────────────────────────────────
def admit(state: BreakerState, now: float, policy: BreakerPolicy) -> BreakerState:
    """Move an expired OPEN state to HALF_OPEN; other states pass unchanged."""
    if state.state != CircuitState.OPEN:
        return state
    if state.last_failure_time is not None and now - state.last_failure_time > policy.timeout:
        return replace(state, state=CircuitState.HALF_OPEN, half_open_success_count=0)
    return state


def transition(
    state: BreakerState, outcome: Outcome, now: float, policy: BreakerPolicy
) -> BreakerState:
    """Apply the outcome of one admitted call."""
    if outcome == Outcome.SUCCESS:
        if state.state == CircuitState.HALF_OPEN:
            successes = state.half_open_success_count + 1
            if successes >= policy.half_open_requests:
                return BreakerState(state=CircuitState.CLOSED)
            return replace(state, half_open_success_count=successes)
        return replace(state, failure_count=max(0, state.failure_count - 1))

    failures = state.failure_count + 1
    if state.state == CircuitState.HALF_OPEN or failures >= policy.threshold:
        return BreakerState(
            state=CircuitState.OPEN,
            failure_count=failures,
            last_failure_time=now,
        )
    return replace(state, failure_count=failures, last_failure_time=now)


# ═══════════════════════════════════════════════════════════════
#  CircuitBreaker
# ═══════════════════════════════════════════════════════════════
class CircuitBreaker:
    """Named breaker wrapping async operations with the state machine above."""

    def __init__(
        self,
        name: str,
        *,
        threshold: int = 5,
        timeout: float = 60.0,
        half_open_requests: int = 3,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.enabled = enabled
        self._policy = BreakerPolicy(
            threshold=threshold, timeout=timeout, half_open_requests=half_open_requests
        )
        self._clock = clock
        self._state = BreakerState()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        name: str,
        settings: CircuitBreakerSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> CircuitBreaker:
        return cls(
            name,
            threshold=settings.threshold,
            timeout=settings.timeout,
            half_open_requests=settings.half_open_requests,
            enabled=settings.enabled,
            clock=clock,
        )

    @property
    def snapshot(self) -> BreakerState:
        with self._lock:
            return self._state

    @property
    def state(self) -> CircuitState:
        return self.snapshot.state

    def can_execute(self) -> bool:
        """Check if the circuit lets the next call through."""
        if not self.enabled:
            return True
        with self._lock:
            self._apply(admit(self._state, self._clock(), self._policy))
            return self._state.state != CircuitState.OPEN

    def record_success(self) -> None:
        with self._lock:
            self._apply(transition(self._state, Outcome.SUCCESS, self._clock(), self._policy))

    def record_failure(self) -> None:
        with self._lock:
            self._apply(transition(self._state, Outcome.FAILURE, self._clock(), self._policy))

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` if the circuit allows it, recording the outcome."""
        if not self.enabled:
            return await operation()
        if not self.can_execute():
            raise CircuitOpenError(self.name)
        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        """Force the circuit CLOSED with all counters zeroed."""
        with self._lock:
            self._apply(BreakerState())
        logger.debug("circuit_breaker_reset", breaker=self.name)

    def _apply(self, new: BreakerState) -> None:
        """Caller must hold lock."""
        prev = self._state
        self._state = new
        if prev.state == new.state:
            return
        CIRCUIT_BREAKER_STATE.labels(breaker=self.name).set(_STATE_GAUGE_VALUE[new.state])
        if new.state == CircuitState.OPEN:
            logger.warning(
                "circuit_breaker_opened",
                breaker=self.name,
                previous_state=prev.state.value,
                failures=new.failure_count,
                timeout_s=self._policy.timeout,
            )
        elif new.state == CircuitState.HALF_OPEN:
            logger.info("circuit_breaker_half_open", breaker=self.name)
        else:
            logger.info(
                "circuit_breaker_closed",
                breaker=self.name,
                previous_state=prev.state.value,
            )


# ═══════════════════════════════════════════════════════════════
#  Registry
# ═══════════════════════════════════════════════════════════════
class CircuitBreakerRegistry:
    """One breaker per operation class, living as long as the client."""

    DEFAULT_NAMES: tuple[str, ...] = ("auth", "token_refresh", "profile")

    def __init__(
        self,
        settings: CircuitBreakerSettings,
        *,
        names: tuple[str, ...] = DEFAULT_NAMES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._breakers = {
            name: CircuitBreaker.from_settings(name, settings, clock=clock) for name in names
        }

    def get(self, name: str) -> CircuitBreaker | None:
        return self._breakers.get(name)

    def __getitem__(self, name: str) -> CircuitBreaker:
        return self._breakers[name]

    def __iter__(self) -> Iterator[CircuitBreaker]:
        return iter(self._breakers.values())

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
