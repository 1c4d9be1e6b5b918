"""
resilience/retry.py

Retry with exponential backoff and jitter for async operations.

Delay before retry n (0-based):
    base_delay * backoff_multiplier ** n, jittered by a uniform factor in
    [1 - jitter_factor, 1 + jitter_factor], capped at max_delay.

Each attempt is bounded by `timeout` seconds (None disables the bound).
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryConfig:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1
    timeout: float | None = 5.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError("jitter_factor must be between 0 and 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


class RetryPolicy:
    """
    Runs an async operation up to config.max_attempts times.

    is_retryable(exc) — return False to re-raise immediately
    sleep / rng       — injectable for tests (default asyncio.sleep / random.uniform)
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        is_retryable: Callable[[BaseException], bool] | None = None,
        sleep: Sleep | None = None,
        rng: Callable[[float, float], float] | None = None,
    ) -> None:
        self.config = config or RetryConfig()
        self._is_retryable = is_retryable
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.uniform

    def compute_delay(self, retry: int) -> float:
        cfg = self.config
        delay = cfg.base_delay * cfg.backoff_multiplier ** retry
        if cfg.jitter_factor:
            delay *= self._rng(1.0 - cfg.jitter_factor, 1.0 + cfg.jitter_factor)
        return max(0.0, min(delay, cfg.max_delay))

    async def execute(self, operation: Operation[T], label: str = "operation") -> T:
        attempts = self.config.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await self._attempt(operation)
            except Exception as exc:
                if self._is_retryable is not None and not self._is_retryable(exc):
                    logger.debug("%s failed with non-retryable %s", label, type(exc).__name__)
                    raise
                if attempt == attempts:
                    logger.warning(
                        "%s failed after %d attempt(s): %s", label, attempts, exc,
                    )
                    raise
                delay = self.compute_delay(attempt - 1)
                logger.info(
                    "%s attempt %d/%d failed (%s) — retrying in %.2fs",
                    label, attempt, attempts, exc, delay,
                )
                await self._sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _attempt(self, operation: Operation[T]) -> T:
        if self.config.timeout is None:
            return await operation()
        async with asyncio.timeout(self.config.timeout):
            return await operation()


async def execute_with_retry(
    operation: Operation[T],
    config: RetryConfig | None = None,
    label: str = "operation",
    *,
    is_retryable: Callable[[BaseException], bool] | None = None,
) -> T:
    """One-shot helper around RetryPolicy(config).execute()."""
    return await RetryPolicy(config, is_retryable=is_retryable).execute(operation, label)
