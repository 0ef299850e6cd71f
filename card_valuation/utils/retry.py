"""
Retry policy for external calls.

The policy itself is pure data plus a backoff function; the clock and the
random source are passed in at call time so tests can drive it with a fake
clock and a seeded RNG instead of real sleeps.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

from card_valuation.errors import FatalPipelineError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff with jitter."""

    max_attempts: int = 3
    """Total attempts including the first."""

    base_delay: float = 1.0
    """Delay before the second attempt, in seconds."""

    factor: float = 2.0
    """Multiplier applied per further attempt."""

    max_delay: float = 10.0
    """Upper bound on any single delay (before jitter)."""

    jitter_ratio: float = 0.2
    """Fractional jitter (0.2 -> +-20%)."""

    retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    """Exception types that consume an attempt and retry. Anything else propagates."""

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.factor < 1:
            raise ValueError("base_delay must be >= 0 and factor >= 1")

    def delay_for(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """
        Delay to wait after a failed attempt.

        Args:
            attempt: 1-based number of the attempt that just failed
            rng: Random source for jitter; None disables jitter

        Returns:
            Seconds to sleep before the next attempt
        """
        base = min(self.max_delay, self.base_delay * (self.factor ** (attempt - 1)))
        if rng is None or self.jitter_ratio <= 0:
            return base
        jitter = base * self.jitter_ratio
        return max(0.0, rng.uniform(base - jitter, base + jitter))

    def call(
        self,
        fn: Callable[[], T],
        *,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        label: str = "call",
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
    ) -> T:
        """
        Run fn until it succeeds or the attempt budget is spent.

        FatalPipelineError is never retried.

        Raises:
            RetryExhaustedError: every attempt failed; carries the last error
        """
        if rng is None:
            rng = random.Random()

        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn()
            except FatalPipelineError:
                raise
            except self.retry_on as e:
                last_error = e
                if on_retry is not None:
                    on_retry(attempt, e)
                if attempt >= self.max_attempts:
                    logger.error(f"{label}: attempt {attempt}/{self.max_attempts} failed "
                                 f"({type(e).__name__}: {e}), giving up")
                    break
                delay = self.delay_for(attempt, rng)
                logger.warning(f"{label}: attempt {attempt}/{self.max_attempts} failed "
                               f"({type(e).__name__}: {e}), retrying in {delay:.2f}s")
                sleep(delay)

        raise RetryExhaustedError(self.max_attempts, last_error)
