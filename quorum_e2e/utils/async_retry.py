"""
Async retry utility with configurable backoff

Post-heal reads (ledger read-back, convergence snapshots) may still hit a
transient failure while a node finishes re-joining. AsyncRetry retries a
bounded number of times on the configured exception types and re-raises
the last error once the attempts are exhausted.

Design Notes:
- Exponential backoff with optional jitter
- Only the exception types in retry_on are retried; stop_on wins over retry_on
- Attempts are logged so a flaky heal shows up in the scenario log
"""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .exceptions import DisruptionError

T = TypeVar('T')
LOG = logging.getLogger(__name__)


class RetryState:
    """Tracks retry state for a single operation"""

    def __init__(
        self,
        max_retries: int,
        base_delay: float,
        max_delay: float,
        exponential_base: float,
        jitter: bool
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.attempt = 0
        self.total_delay = 0.0
        self.last_exception: Optional[Exception] = None
        self.start_time = time.monotonic()

    def should_retry(self) -> bool:
        return self.attempt < self.max_retries

    def next_delay(self) -> float:
        delay = self.base_delay * (self.exponential_base ** self.attempt)

        if self.jitter:
            jitter_range = delay * 0.25
            delay += random.uniform(-jitter_range, jitter_range)

        delay = min(delay, self.max_delay)
        self.total_delay += delay
        return delay

    def record_attempt(self, exception: Exception) -> None:
        self.attempt += 1
        self.last_exception = exception


class AsyncRetry:
    """
    Configurable async retry mechanism with exponential backoff.

    Wraps a single awaitable call through execute().
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retry_on: Optional[Tuple[Type[Exception], ...]] = None,
        stop_on: Optional[Tuple[Type[Exception], ...]] = None,
    ):
        """
        Args:
            max_retries: Total number of attempts
            base_delay: Delay in seconds before the second attempt
            max_delay: Upper bound on any single delay
            exponential_base: Multiplier for exponential backoff
            jitter: Add up to ±25% random jitter to each delay
            retry_on: Exception types that trigger a retry
            stop_on: Exception types that are re-raised immediately
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retry_on = retry_on or (DisruptionError,)
        self.stop_on = stop_on or ()

    async def execute(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        state = RetryState(
            self.max_retries,
            self.base_delay,
            self.max_delay,
            self.exponential_base,
            self.jitter
        )

        while True:
            try:
                result = await func(*args, **kwargs)
                if state.attempt > 0:
                    LOG.info(
                        f"Operation succeeded after {state.attempt} retries "
                        f"(total delay: {state.total_delay:.2f}s)"
                    )
                return result

            except Exception as e:
                if isinstance(e, self.stop_on):
                    raise

                if not isinstance(e, self.retry_on):
                    raise

                state.record_attempt(e)
                if not state.should_retry():
                    LOG.error(
                        f"Operation failed after {state.max_retries} attempts. "
                        f"Last error: {type(e).__name__}: {e}"
                    )
                    raise

                delay = state.next_delay()
                LOG.warning(
                    f"Attempt {state.attempt}/{state.max_retries} failed: "
                    f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
                )
                await asyncio.sleep(delay)
