"""
tests/test_retry.py

Tests for resilience/retry.py — backoff schedule, retry predicate,
exhaustion and per-attempt timeout. Sleeps are recorded, never awaited.
"""

from __future__ import annotations

import asyncio

import pytest

from authguard.backend.resilience.retry import RetryConfig, RetryPolicy, execute_with_retry


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class Flaky:
    """Fails `failures` times, then returns `value`."""

    def __init__(self, failures: int, value="ok", exc: type[Exception] = ConnectionError) -> None:
        self.failures = failures
        self.value = value
        self.exc = exc
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc(f"failure {self.calls}")
        return self.value


def policy(**overrides) -> tuple[RetryPolicy, list[float]]:
    delays: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    cfg = RetryConfig(**{"jitter_factor": 0.0, **overrides})
    return RetryPolicy(cfg, sleep=fake_sleep), delays


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

class TestRetryConfig:

    def test_defaults(self):
        cfg = RetryConfig()
        assert cfg.max_retries == 3
        assert cfg.max_attempts == 4
        assert cfg.base_delay == 1.0
        assert cfg.max_delay == 30.0

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            RetryConfig(max_retries=-1)

    @pytest.mark.parametrize("jitter", [-0.1, 1.5])
    def test_jitter_out_of_range(self, jitter):
        with pytest.raises(ValueError):
            RetryConfig(jitter_factor=jitter)


# ---------------------------------------------------------------------------
# Delays
# ---------------------------------------------------------------------------

class TestComputeDelay:

    def test_exponential(self):
        p, _ = policy(base_delay=1.0, backoff_multiplier=2.0)
        assert [p.compute_delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self):
        p, _ = policy(base_delay=1.0, backoff_multiplier=10.0, max_delay=5.0)
        assert p.compute_delay(3) == 5.0

    def test_jitter_bounds(self):
        cfg = RetryConfig(base_delay=2.0, jitter_factor=0.25)
        low = RetryPolicy(cfg, rng=lambda a, b: a).compute_delay(0)
        high = RetryPolicy(cfg, rng=lambda a, b: b).compute_delay(0)
        assert low == pytest.approx(1.5)
        assert high == pytest.approx(2.5)

    def test_jitter_still_capped(self):
        cfg = RetryConfig(base_delay=10.0, max_delay=10.0, jitter_factor=0.5)
        assert RetryPolicy(cfg, rng=lambda a, b: b).compute_delay(0) == 10.0


# ---------------------------------------------------------------------------
# execute()
# ---------------------------------------------------------------------------

class TestExecute:

    @pytest.mark.asyncio
    async def test_first_try_success(self):
        p, delays = policy()
        op = Flaky(0)
        assert await p.execute(op) == "ok"
        assert op.calls == 1
        assert delays == []

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self):
        p, delays = policy(max_retries=3)
        op = Flaky(2)
        assert await p.execute(op, "webhook") == "ok"
        assert op.calls == 3
        assert delays == [1.0, 2.0]
        assert delays == sorted(delays)

    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error(self):
        p, delays = policy(max_retries=2)
        op = Flaky(10)
        with pytest.raises(ConnectionError, match="failure 3"):
            await p.execute(op)
        assert op.calls == 3
        assert len(delays) == 2

    @pytest.mark.asyncio
    async def test_zero_retries(self):
        p, delays = policy(max_retries=0)
        op = Flaky(1)
        with pytest.raises(ConnectionError):
            await p.execute(op)
        assert op.calls == 1
        assert delays == []

    @pytest.mark.asyncio
    async def test_non_retryable_raised_immediately(self):
        delays: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            delays.append(seconds)

        p = RetryPolicy(
            RetryConfig(jitter_factor=0.0),
            is_retryable=lambda exc: not isinstance(exc, ValueError),
            sleep=fake_sleep,
        )
        op = Flaky(5, exc=ValueError)
        with pytest.raises(ValueError):
            await p.execute(op)
        assert op.calls == 1
        assert delays == []

    @pytest.mark.asyncio
    async def test_attempt_timeout_is_retried(self):
        calls = 0

        async def slow_then_fast():
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(1)
            return "done"

        p, delays = policy(timeout=0.01, max_retries=1)
        assert await p.execute(slow_then_fast) == "done"
        assert calls == 2
        assert len(delays) == 1

    @pytest.mark.asyncio
    async def test_timeout_exhaustion(self):
        async def hang():
            await asyncio.sleep(1)

        p, _ = policy(timeout=0.01, max_retries=0)
        with pytest.raises(TimeoutError):
            await p.execute(hang)

    @pytest.mark.asyncio
    async def test_execute_with_retry_helper(self):
        op = Flaky(1)
        cfg = RetryConfig(base_delay=0.0, jitter_factor=0.0)
        assert await execute_with_retry(op, cfg, "helper") == "ok"
        assert op.calls == 2
