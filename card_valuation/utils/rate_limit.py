"""
Token bucket used by each price-source adapter.

Every adapter owns its own bucket; there is no module-level limiter state.
The bucket is guarded by a lock so one adapter instance can be shared by
concurrent pipeline invocations.
"""

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TokenBucket:
    """
    Per-minute token bucket.

    Usage:
        bucket = TokenBucket(requests_per_minute=20)
        if not bucket.acquire(timeout=5.0):
            raise RateLimitExceededError(...)
    """

    def __init__(
        self,
        requests_per_minute: int,
        capacity: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Args:
            requests_per_minute: Sustained refill rate
            capacity: Burst size (defaults to requests_per_minute)
            clock: Monotonic clock, injectable for tests
            sleep: Sleep function, injectable for tests
        """
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self.rate_per_second = requests_per_minute / 60.0
        self.capacity = float(capacity if capacity is not None else requests_per_minute)
        self._clock = clock
        self._sleep = sleep
        self._tokens = self.capacity
        self._last_refill = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate_per_second)
            self._last_refill = now

    @property
    def available(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def try_acquire(self) -> bool:
        """Take a token if one is available right now."""
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Block until a token is available.

        Args:
            timeout: Maximum seconds to wait; None waits indefinitely

        Returns:
            True if a token was taken, False if the wait would exceed timeout
        """
        deadline = None if timeout is None else self._clock() + timeout
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return True
                wait = (1.0 - self._tokens) / self.rate_per_second

            if deadline is not None:
                remaining = deadline - self._clock()
                if wait > remaining:
                    logger.debug(f"Token wait {wait:.2f}s exceeds remaining budget {remaining:.2f}s")
                    return False
            self._sleep(wait)
