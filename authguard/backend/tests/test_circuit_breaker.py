"""
tests/test_circuit_breaker.py

Tests for resilience/circuit_breaker.py. Time is driven by a fake clock
so OPEN → HALF_OPEN transitions happen instantly.
"""

from __future__ import annotations

import asyncio

import pytest

from authguard.backend.errors import CircuitBreakerOpenError
from authguard.backend.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def ok():
    return "ok"


async def boom():
    raise ConnectionError("down")


def breaker(clock: FakeClock, **overrides) -> CircuitBreaker:
    cfg = {
        "failure_threshold": 3,
        "failure_count_window": 60.0,
        "open_state_duration": 30.0,
        "success_threshold": 2,
        "failure_rate_threshold": 100.0,
        "minimum_number_of_calls": 10,
        **overrides,
    }
    return CircuitBreaker("test", CircuitBreakerConfig(**cfg), clock=clock)


async def fail_times(cb: CircuitBreaker, n: int) -> None:
    for _ in range(n):
        with pytest.raises(ConnectionError):
            await cb.execute(boom)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestClosed:

    @pytest.mark.asyncio
    async def test_passes_results_through(self):
        cb = breaker(FakeClock())
        assert await cb.execute(ok) == "ok"
        assert cb.state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_below_threshold_stays_closed(self):
        cb = breaker(FakeClock())
        await fail_times(cb, 2)
        assert cb.state is CircuitState.CLOSED
        assert cb.get_status().consecutive_failures == 2

    @pytest.mark.asyncio
    async def test_old_failures_leave_the_window(self):
        clock = FakeClock()
        cb = breaker(clock)
        await fail_times(cb, 2)
        clock.advance(61)
        await fail_times(cb, 1)
        assert cb.state is CircuitState.CLOSED
        assert cb.get_status().failures_in_window == 1


class TestOpen:

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self):
        cb = breaker(FakeClock())
        await fail_times(cb, 3)
        assert cb.state is CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_rejects_without_calling(self):
        cb = breaker(FakeClock())
        await fail_times(cb, 3)
        calls = 0

        async def counted():
            nonlocal calls
            calls += 1
            return "ok"

        with pytest.raises(CircuitBreakerOpenError) as excinfo:
            await cb.execute(counted)
        assert calls == 0
        assert "OPEN for test" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_failure_rate_trip(self):
        cb = breaker(
            FakeClock(), failure_threshold=100, failure_rate_threshold=50.0, minimum_number_of_calls=4,
        )
        for op in (ok, boom, ok, boom):
            try:
                await cb.execute(op)
            except ConnectionError:
                pass
        assert cb.state is CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_rate_needs_minimum_calls(self):
        cb = breaker(
            FakeClock(), failure_threshold=100, failure_rate_threshold=50.0, minimum_number_of_calls=4,
        )
        await fail_times(cb, 3)
        assert cb.state is CircuitState.CLOSED


class TestHalfOpen:

    @pytest.mark.asyncio
    async def test_half_open_after_duration(self):
        clock = FakeClock()
        cb = breaker(clock)
        await fail_times(cb, 3)
        clock.advance(29)
        assert cb.state is CircuitState.OPEN
        clock.advance(1)
        assert cb.state is CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_probe_successes_close(self):
        clock = FakeClock()
        cb = breaker(clock)
        await fail_times(cb, 3)
        clock.advance(30)

        assert await cb.execute(ok) == "ok"
        assert cb.state is CircuitState.HALF_OPEN
        assert await cb.execute(ok) == "ok"
        assert cb.state is CircuitState.CLOSED

        status = cb.get_status()
        assert status.calls_in_window == 0
        assert status.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_probe_failure_reopens(self):
        clock = FakeClock()
        cb = breaker(clock)
        await fail_times(cb, 3)
        clock.advance(30)
        await fail_times(cb, 1)
        assert cb.state is CircuitState.OPEN
        clock.advance(29)
        assert cb.state is CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_probe_limit(self):
        clock = FakeClock()
        cb = breaker(clock, half_open_max_calls=1)
        await fail_times(cb, 3)
        clock.advance(30)

        release = asyncio.Event()

        async def slow():
            await release.wait()
            return "ok"

        probe = asyncio.create_task(cb.execute(slow))
        await asyncio.sleep(0)
        with pytest.raises(CircuitBreakerOpenError):
            await cb.execute(ok)
        release.set()
        assert await probe == "ok"

    @pytest.mark.asyncio
    async def test_cancelled_probe_frees_slot(self):
        clock = FakeClock()
        cb = breaker(clock, half_open_max_calls=1)
        await fail_times(cb, 3)
        clock.advance(30)

        probe = asyncio.create_task(cb.execute(lambda: asyncio.sleep(10)))
        await asyncio.sleep(0)
        probe.cancel()
        with pytest.raises(asyncio.CancelledError):
            await probe

        assert cb.state is CircuitState.HALF_OPEN
        assert await cb.execute(ok) == "ok"


class TestStatusAndReset:

    @pytest.mark.asyncio
    async def test_status_snapshot(self):
        clock = FakeClock()
        cb = breaker(clock)
        await cb.execute(ok)
        await fail_times(cb, 1)

        status = cb.get_status()
        assert status.name == "test"
        assert status.state is CircuitState.CLOSED
        assert status.calls_in_window == 2
        assert status.failures_in_window == 1
        assert status.failure_rate == pytest.approx(50.0)
        assert status.last_failure_time == clock.now
        assert status.to_dict()["state"] == "CLOSED"

    @pytest.mark.asyncio
    async def test_reset(self):
        cb = breaker(FakeClock())
        await fail_times(cb, 3)
        cb.reset()
        assert cb.state is CircuitState.CLOSED
        assert cb.get_status().failures_in_window == 0
        assert await cb.execute(ok) == "ok"

    def test_defaults(self):
        cfg = CircuitBreakerConfig()
        assert cfg.failure_threshold == 5
        assert cfg.open_state_duration == 30.0
        assert cfg.success_threshold == 3
        assert cfg.probe_limit == 3
