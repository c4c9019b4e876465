"""Bounded retry with exponential backoff and jitter for browser operations."""

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential, wait_random

from catalog_crawler.models import ScrapeConfig

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


class ResilientExecutor:
    """Runs one async operation up to ``max_retries`` times.

    The wait after attempt k is ``min(cap, base * 2**(k-1)) + uniform(0, jitter)``.
    The executor never looks at what failed: any exception raised by the
    operation triggers another attempt until the budget is spent, then the last
    exception is re-raised with an ``attempts`` attribute.
    """

    def __init__(
        self,
        max_retries: int = 3,
        backoff_base_ms: int = 1000,
        backoff_cap_ms: int = 10000,
        jitter_ms: int = 1000,
        sleep: Optional[SleepFn] = None,
    ):
        self.max_retries = max_retries
        self.backoff_base_ms = backoff_base_ms
        self.backoff_cap_ms = backoff_cap_ms
        self.jitter_ms = jitter_ms
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_config(cls, config: ScrapeConfig, sleep: Optional[SleepFn] = None) -> "ResilientExecutor":
        return cls(
            max_retries=config.max_retries,
            backoff_base_ms=config.backoff_base_ms,
            backoff_cap_ms=config.backoff_cap_ms,
            jitter_ms=config.jitter_ms,
            sleep=sleep,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Deterministic part of the wait after ``attempt`` failed, in seconds."""
        return min(self.backoff_cap_ms, self.backoff_base_ms * 2 ** (attempt - 1)) / 1000.0

    def _wait_strategy(self):
        return wait_exponential(
            multiplier=self.backoff_base_ms / 1000.0,
            max=self.backoff_cap_ms / 1000.0,
        ) + wait_random(0, self.jitter_ms / 1000.0)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
        description: str = "operation",
    ) -> T:
        """Execute ``operation`` with retries.

        Args:
            operation: Zero-argument coroutine function; called once per attempt
            max_retries: Attempt budget for this call (defaults to the executor's)
            description: Label used in log messages

        Returns:
            Whatever the first successful attempt returned

        Raises:
            The exception of the last attempt, with ``attempts`` set on it
        """
        budget = max_retries if max_retries is not None else self.max_retries
        attempts = max(1, int(budget))

        def _log_retry(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            wait_s = state.next_action.sleep if state.next_action else 0.0
            logger.warning(
                f"{description} failed (attempt {state.attempt_number}/{attempts}): {exc}; "
                f"retrying in {wait_s:.2f}s"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=self._wait_strategy(),
            sleep=self._sleep,
            before_sleep=_log_retry,
            reraise=True,
        )

        attempt_number = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    return await operation()
        except Exception as exc:
            exc.attempts = attempt_number
            logger.error(f"{description} gave up after {attempt_number} attempt(s): {exc}")
            raise
