"""Per-tier circuit breakers.

State machine:

    CLOSED --(failure_threshold failures within failure_window_ms)--> OPEN
    OPEN --(recovery_timeout_ms elapsed, observed on next check)--> HALF_OPEN
    HALF_OPEN --(half_open_success_threshold consecutive successes)--> CLOSED
    HALF_OPEN --(any failure)--> OPEN

The router treats an OPEN tier exactly like an unavailable one: skipped, never
attempted. All counters and transitions are updated under a lock so two
concurrent failures cannot both trigger the same transition. Time comes from
an injectable monotonic clock (seconds) so tests can drive the window.

Usage:
    breakers = CircuitBreakerRegistry(CircuitBreakerConfig())

    if breakers.allow_request("claude-haiku-4.5"):
        try:
            response = await provider.complete(...)
            breakers.record_success("claude-haiku-4.5")
        except ProviderError:
            breakers.record_failure("claude-haiku-4.5")
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from cascade_router.config import Settings

log = structlog.get_logger(__name__)

Clock = Callable[[], float]


class CircuitState(str, Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, calls are skipped
    HALF_OPEN = "half_open"  # Probing whether the tier recovered


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds shared by every breaker in a registry.

    Attributes:
        failure_threshold: Failures inside the window that open the circuit
        failure_window_ms: Rolling window for counting failures
        recovery_timeout_ms: Time spent OPEN before probing again
        half_open_success_threshold: Consecutive successes needed to close
    """

    failure_threshold: int = 5
    failure_window_ms: int = 120_000
    recovery_timeout_ms: int = 60_000
    half_open_success_threshold: int = 2

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.half_open_success_threshold < 1:
            raise ValueError("half_open_success_threshold must be at least 1")
        if self.failure_window_ms <= 0 or self.recovery_timeout_ms < 0:
            raise ValueError("failure_window_ms must be positive and recovery_timeout_ms non-negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> CircuitBreakerConfig:
        return cls(
            failure_threshold=settings.circuit_failure_threshold,
            failure_window_ms=settings.circuit_failure_window_ms,
            recovery_timeout_ms=settings.circuit_recovery_timeout_ms,
            half_open_success_threshold=settings.circuit_half_open_success_threshold,
        )


@dataclass(frozen=True)
class CircuitTransition:
    """A single state change, delivered to the transition listener."""

    name: str
    previous: CircuitState
    current: CircuitState
    at: float
    failures: int


TransitionListener = Callable[[CircuitTransition], None]


class CircuitBreaker:
    """Windowed failure-isolation state machine for one tier."""

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Clock = time.monotonic,
        on_transition: TransitionListener | None = None,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._on_transition = on_transition
        self._lock = threading.Lock()
        self._failures: deque[float] = deque()
        self._state = CircuitState.CLOSED
        self._half_open_successes = 0
        self._last_transition_at = clock()

    @property
    def _window(self) -> float:
        return self.config.failure_window_ms / 1000.0

    @property
    def _recovery(self) -> float:
        return self.config.recovery_timeout_ms / 1000.0

    def _prune(self, now: float) -> None:
        while self._failures and now - self._failures[0] >= self._window:
            self._failures.popleft()

    def _transition(self, new_state: CircuitState, now: float) -> CircuitTransition:
        # Caller holds the lock
        transition = CircuitTransition(
            name=self.name,
            previous=self._state,
            current=new_state,
            at=now,
            failures=len(self._failures),
        )
        self._state = new_state
        self._last_transition_at = now
        self._half_open_successes = 0
        if new_state is CircuitState.CLOSED:
            self._failures.clear()
        return transition

    def _check_recovery(self, now: float) -> CircuitTransition | None:
        # Caller holds the lock
        if self._state is CircuitState.OPEN and now - self._last_transition_at >= self._recovery:
            return self._transition(CircuitState.HALF_OPEN, now)
        return None

    def _notify(self, *transitions: CircuitTransition | None) -> None:
        for transition in transitions:
            if transition is None:
                continue
            if transition.current is CircuitState.OPEN:
                log.warning(
                    "circuit_breaker.opened",
                    tier=transition.name,
                    previous=transition.previous.value,
                    failures=transition.failures,
                )
            elif transition.current is CircuitState.HALF_OPEN:
                log.info("circuit_breaker.half_opened", tier=transition.name)
            else:
                log.info(
                    "circuit_breaker.closed",
                    tier=transition.name,
                    previous=transition.previous.value,
                )
            if self._on_transition is None:
                continue
            try:
                self._on_transition(transition)
            except Exception:
                log.exception("circuit_breaker.listener_failed", tier=self.name)

    @property
    def state(self) -> CircuitState:
        """Current state. Reading it may move an expired OPEN circuit to HALF_OPEN."""
        with self._lock:
            transition = self._check_recovery(self._clock())
            state = self._state
        self._notify(transition)
        return state

    def allow_request(self) -> bool:
        return self.state is not CircuitState.OPEN

    def record_success(self) -> None:
        closed = None
        with self._lock:
            now = self._clock()
            recovered = self._check_recovery(now)
            if self._state is CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.half_open_success_threshold:
                    closed = self._transition(CircuitState.CLOSED, now)
        self._notify(recovered, closed)

    def record_failure(self) -> None:
        opened = None
        with self._lock:
            now = self._clock()
            recovered = self._check_recovery(now)
            self._failures.append(now)
            self._prune(now)
            if self._state is CircuitState.HALF_OPEN:
                opened = self._transition(CircuitState.OPEN, now)
            elif (
                self._state is CircuitState.CLOSED
                and len(self._failures) >= self.config.failure_threshold
            ):
                opened = self._transition(CircuitState.OPEN, now)
        self._notify(recovered, opened)

    @property
    def failure_count(self) -> int:
        """Failures still inside the rolling window."""
        with self._lock:
            self._prune(self._clock())
            return len(self._failures)

    @property
    def last_transition_at(self) -> float:
        return self._last_transition_at

    def snapshot(self) -> dict[str, Any]:
        """State for monitoring and the CLI."""
        state = self.state
        with self._lock:
            now = self._clock()
            self._prune(now)
            retry_in = 0.0
            if state is CircuitState.OPEN:
                retry_in = max(0.0, self._recovery - (now - self._last_transition_at))
            return {
                "tier": self.name,
                "state": state.value,
                "failures": len(self._failures),
                "threshold": self.config.failure_threshold,
                "seconds_until_retry": retry_in,
                "last_transition_at": self._last_transition_at,
            }

    def reset(self) -> None:
        """Force the circuit closed and forget recorded failures."""
        with self._lock:
            transition = None
            if self._state is not CircuitState.CLOSED:
                transition = self._transition(CircuitState.CLOSED, self._clock())
            self._failures.clear()
        self._notify(transition)


class CircuitBreakerRegistry:
    """Lazily created breaker per tier, all sharing one configuration."""

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Clock = time.monotonic,
        on_transition: TransitionListener | None = None,
    ) -> None:
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}
        self._listeners: list[TransitionListener] = []
        if on_transition is not None:
            self._listeners.append(on_transition)

    def add_listener(self, on_transition: TransitionListener) -> None:
        """Deliver transitions of existing and future breakers to ``on_transition`` too.

        Several routers may share one registry; each adds its own listener.
        """
        with self._lock:
            self._listeners.append(on_transition)

    def remove_listener(self, on_transition: TransitionListener) -> None:
        with self._lock:
            self._listeners.remove(on_transition)

    def _dispatch(self, transition: CircuitTransition) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(transition)
            except Exception:
                log.exception("circuit_breaker.listener_failed", tier=transition.name)

    def get(self, tier: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(tier)
            if breaker is None:
                breaker = CircuitBreaker(
                    tier,
                    self.config,
                    clock=self._clock,
                    on_transition=self._dispatch,
                )
                self._breakers[tier] = breaker
            return breaker

    def state(self, tier: str) -> CircuitState:
        return self.get(tier).state

    def allow_request(self, tier: str) -> bool:
        return self.get(tier).allow_request()

    def record_success(self, tier: str) -> None:
        self.get(tier).record_success()

    def record_failure(self, tier: str) -> None:
        self.get(tier).record_failure()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {breaker.name: breaker.snapshot() for breaker in breakers}

    def reset(self, tier: str | None = None) -> None:
        if tier is not None:
            self.get(tier).reset()
            return
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()
