"""
Retry with exponential backoff and jitter for backend calls.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from loguru import logger

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to wait in between."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 20.0
    multiplier: float = 2.0
    jitter: float = 0.5

    def delay_for(self, attempt: int, rng: random.Random) -> float:
        """Delay after the given failed attempt (1-based).

        The exponential delay is capped at max_delay; the jitter fraction of
        it is then randomized so concurrent callers do not retry in lockstep.
        """
        delay = min(self.max_delay, self.base_delay * (self.multiplier ** (attempt - 1)))
        if self.jitter <= 0 or delay <= 0:
            return delay
        spread = delay * min(self.jitter, 1.0)
        return delay - spread + rng.uniform(0, spread)


@dataclass
class RetryOutcome(Generic[T]):
    """Result of a retried operation."""

    value: Optional[T]
    attempts: int
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retriable: Callable[[Exception], bool],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Optional[random.Random] = None,
    label: str = "operation",
) -> RetryOutcome[T]:
    """Run operation until it succeeds, fails non-retriably or runs out of attempts.

    Exceptions are captured in the outcome instead of raised; cancellation is
    never captured and propagates immediately.
    """
    rng = rng or random.Random()
    attempt = 0

    while True:
        attempt += 1
        try:
            value = await operation()
            if attempt > 1:
                logger.debug(f"{label} succeeded on attempt {attempt}/{policy.max_attempts}")
            return RetryOutcome(value=value, attempts=attempt)
        except Exception as e:
            if not retriable(e):
                logger.debug(f"{label} failed with non-retriable {type(e).__name__}: {e}")
                return RetryOutcome(value=None, attempts=attempt, error=e)
            if attempt >= policy.max_attempts:
                logger.debug(f"{label}: all {policy.max_attempts} attempts failed, last error: {e}")
                return RetryOutcome(value=None, attempts=attempt, error=e)

            wait_time = policy.delay_for(attempt, rng)
            logger.debug(
                f"{label} attempt {attempt}/{policy.max_attempts} failed ({e}), "
                f"retrying in {wait_time:.2f}s"
            )
            await sleep(wait_time)
