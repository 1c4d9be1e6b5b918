"""
resilience/circuit_breaker.py

CircuitBreaker — stops calling a failing dependency until it has had time
to recover.

    CLOSED    → calls pass through; failures are recorded in a sliding window
    OPEN      → calls are rejected with CircuitBreakerOpenError
    HALF_OPEN → a limited number of probe calls are let through

CLOSED → OPEN when the window holds failure_threshold failures, or when at
least minimum_number_of_calls calls are in the window and the failure rate
over the most recent minimum_number_of_calls of them reaches
failure_rate_threshold percent.
OPEN → HALF_OPEN once open_state_duration seconds have passed.
HALF_OPEN → CLOSED after success_threshold successes; any failure reopens.

Thread safety: state is only touched while holding a threading.Lock, which
is never held across an await.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from ..errors import CircuitBreakerOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED    = "CLOSED"
    OPEN      = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True, slots=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    failure_count_window: float = 60.0      # seconds
    open_state_duration: float = 30.0       # seconds
    success_threshold: int = 3
    failure_rate_threshold: float = 50.0    # percent
    minimum_number_of_calls: int = 5
    half_open_max_calls: int | None = None  # None → success_threshold

    @property
    def probe_limit(self) -> int:
        if self.half_open_max_calls is None:
            return max(1, self.success_threshold)
        return max(1, self.half_open_max_calls)


@dataclass(frozen=True, slots=True)
class CircuitBreakerStatus:
    """Point-in-time snapshot returned by CircuitBreaker.get_status()."""

    name: str
    state: CircuitState
    consecutive_failures: int
    failures_in_window: int
    calls_in_window: int
    failure_rate: float                 # percent over the calls in the window
    half_open_successes: int
    last_failure_time: float | None     # clock() units
    last_state_change_time: float       # clock() units

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "failures_in_window": self.failures_in_window,
            "calls_in_window": self.calls_in_window,
            "failure_rate": round(self.failure_rate, 1),
            "half_open_successes": self.half_open_successes,
            "last_failure_time": self.last_failure_time,
            "last_state_change_time": self.last_state_change_time,
        }


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._calls: deque[tuple[float, bool]] = deque()   # (timestamp, succeeded)
        self._consecutive_failures = 0
        self._half_open_successes = 0
        self._half_open_in_flight = 0
        self._last_failure_time: float | None = None
        self._last_state_change_time = clock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open(self._clock())
            return self._state

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run *operation* if the breaker allows it; record the outcome."""
        probing = self._acquire()
        try:
            result = await operation()
        except Exception:
            self._record(success=False, probing=probing)
            raise
        except BaseException:
            # cancellation says nothing about the dependency's health
            self._release(probing)
            raise
        self._record(success=True, probing=probing)
        return result

    def get_status(self) -> CircuitBreakerStatus:
        with self._lock:
            now = self._clock()
            self._maybe_half_open(now)
            self._prune(now)
            failures = sum(1 for _, ok in self._calls if not ok)
            total = len(self._calls)
            return CircuitBreakerStatus(
                name=self.name,
                state=self._state,
                consecutive_failures=self._consecutive_failures,
                failures_in_window=failures,
                calls_in_window=total,
                failure_rate=(failures / total * 100) if total else 0.0,
                half_open_successes=self._half_open_successes,
                last_failure_time=self._last_failure_time,
                last_state_change_time=self._last_state_change_time,
            )

    def reset(self) -> None:
        with self._lock:
            self._calls.clear()
            self._consecutive_failures = 0
            self._half_open_successes = 0
            self._half_open_in_flight = 0
            self._last_failure_time = None
            self._transition(CircuitState.CLOSED, self._clock())
        logger.info("Circuit breaker %s has been reset", self.name)

    def __repr__(self) -> str:
        return f"<CircuitBreaker {self.name} {self._state.value}>"

    # ------------------------------------------------------------------
    # Internals — callers must hold self._lock unless noted
    # ------------------------------------------------------------------

    def _acquire(self) -> bool:
        """Admit one call or raise. Returns True if the call is a HALF_OPEN probe."""
        with self._lock:
            self._maybe_half_open(self._clock())
            if self._state is CircuitState.OPEN:
                raise CircuitBreakerOpenError(self.name)
            if self._state is CircuitState.HALF_OPEN:
                if self._half_open_in_flight >= self.config.probe_limit:
                    raise CircuitBreakerOpenError(self.name)
                self._half_open_in_flight += 1
                return True
            return False

    def _release(self, probing: bool) -> None:
        if probing:
            with self._lock:
                self._half_open_in_flight = max(0, self._half_open_in_flight - 1)

    def _record(self, *, success: bool, probing: bool) -> None:
        with self._lock:
            now = self._clock()
            if probing:
                self._half_open_in_flight = max(0, self._half_open_in_flight - 1)
            self._calls.append((now, success))
            self._prune(now)

            if success:
                self._consecutive_failures = 0
                if self._state is CircuitState.HALF_OPEN:
                    self._half_open_successes += 1
                    if self._half_open_successes >= self.config.success_threshold:
                        self._calls.clear()
                        self._transition(CircuitState.CLOSED, now)
                return

            self._consecutive_failures += 1
            self._last_failure_time = now

            if self._state is CircuitState.HALF_OPEN:
                logger.warning("Circuit breaker %s failure in HALF_OPEN state, reopening", self.name)
                self._transition(CircuitState.OPEN, now)
                return

            if self._state is CircuitState.CLOSED and self._should_trip():
                self._transition(CircuitState.OPEN, now)

    def _should_trip(self) -> bool:
        cfg = self.config
        failures = sum(1 for _, ok in self._calls if not ok)
        if failures >= cfg.failure_threshold:
            logger.error(
                "Circuit breaker %s opening: %d failures in %.0fs window",
                self.name, failures, cfg.failure_count_window,
            )
            return True

        if len(self._calls) >= cfg.minimum_number_of_calls > 0:
            recent = list(self._calls)[-cfg.minimum_number_of_calls:]
            rate = sum(1 for _, ok in recent if not ok) / len(recent) * 100
            if rate >= cfg.failure_rate_threshold:
                logger.error(
                    "Circuit breaker %s opening: failure rate %.1f%% over last %d calls",
                    self.name, rate, len(recent),
                )
                return True
        return False

    def _maybe_half_open(self, now: float) -> None:
        if (
            self._state is CircuitState.OPEN
            and now - self._last_state_change_time >= self.config.open_state_duration
        ):
            self._transition(CircuitState.HALF_OPEN, now)

    def _prune(self, now: float) -> None:
        cutoff = now - self.config.failure_count_window
        while self._calls and self._calls[0][0] <= cutoff:
            self._calls.popleft()

    def _transition(self, state: CircuitState, now: float) -> None:
        if state is self._state and state is not CircuitState.CLOSED:
            return
        previous = self._state
        self._state = state
        self._last_state_change_time = now
        self._half_open_successes = 0
        if state is not CircuitState.HALF_OPEN:
            self._half_open_in_flight = 0
        if previous is not state:
            logger.info(
                "Circuit breaker %s transitioning %s -> %s",
                self.name, previous.value, state.value,
            )
