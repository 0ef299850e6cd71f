"""
card_valuation/tests/test_retry.py: Unit tests for RetryPolicy and TokenBucket

Both are driven by a fake clock; no test sleeps for real.
"""

import random

import pytest

from card_valuation.errors import FatalPipelineError, ImageNotFoundError, RetryExhaustedError
from card_valuation.utils.rate_limit import TokenBucket
from card_valuation.utils.retry import RetryPolicy


class Flaky:
    """Callable that fails a fixed number of times before succeeding."""

    def __init__(self, failures, error=None):
        self.failures = failures
        self.error = error or TimeoutError("upstream timed out")
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestRetryPolicy:
    """Test bounded exponential backoff"""

    def test_success_first_try(self, fake_clock):
        """Test that a healthy call never sleeps"""
        fn = Flaky(0)
        assert RetryPolicy().call(fn, sleep=fake_clock.sleep) == "ok"
        assert fn.calls == 1
        assert fake_clock.sleeps == []

    def test_recovers_after_transient_failures(self, fake_clock):
        """Test exponential delays between attempts"""
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, factor=2.0, jitter_ratio=0.0)
        fn = Flaky(2)

        assert policy.call(fn, sleep=fake_clock.sleep) == "ok"
        assert fn.calls == 3
        assert fake_clock.sleeps == [1.0, 2.0]

    def test_exhaustion_does_not_sleep_after_last_attempt(self, fake_clock):
        """Test that the final failure raises immediately"""
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter_ratio=0.0)
        fn = Flaky(10)

        with pytest.raises(RetryExhaustedError) as exc_info:
            policy.call(fn, sleep=fake_clock.sleep)

        assert fn.calls == 3
        assert len(fake_clock.sleeps) == 2
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, TimeoutError)

    def test_fatal_errors_not_retried(self, fake_clock):
        """Test that FatalPipelineError propagates on the first attempt"""
        fn = Flaky(5, error=ImageNotFoundError("missing.jpg"))

        with pytest.raises(FatalPipelineError):
            RetryPolicy(max_attempts=5).call(fn, sleep=fake_clock.sleep)

        assert fn.calls == 1
        assert fake_clock.sleeps == []

    def test_retry_on_filters_exception_types(self, fake_clock):
        """Test that exceptions outside retry_on propagate unchanged"""
        policy = RetryPolicy(max_attempts=3, retry_on=(TimeoutError,))
        fn = Flaky(1, error=KeyError("bad"))

        with pytest.raises(KeyError):
            policy.call(fn, sleep=fake_clock.sleep)
        assert fn.calls == 1

    def test_on_retry_callback(self, fake_clock):
        """Test that every failed attempt is reported"""
        seen = []
        policy = RetryPolicy(max_attempts=3, jitter_ratio=0.0)
        policy.call(Flaky(2), sleep=fake_clock.sleep, on_retry=lambda n, e: seen.append(n))
        assert seen == [1, 2]

    def test_delay_capped_and_jittered(self):
        """Test max_delay cap and jitter bounds"""
        policy = RetryPolicy(base_delay=1.0, factor=2.0, max_delay=10.0, jitter_ratio=0.2)

        assert policy.delay_for(10) == 10.0
        rng = random.Random(42)
        for _ in range(20):
            assert 0.8 <= policy.delay_for(1, rng) <= 1.2

    def test_invalid_configuration(self):
        """Test that nonsense policies are rejected"""
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(factor=0.5)


class TestTokenBucket:
    """Test per-adapter rate limiting"""

    def test_burst_then_empty(self, fake_clock):
        """Test that capacity bounds the burst"""
        bucket = TokenBucket(60, capacity=2, clock=fake_clock, sleep=fake_clock.sleep)

        assert bucket.try_acquire()
        assert bucket.try_acquire()
        assert not bucket.try_acquire()

    def test_refills_over_time(self, fake_clock):
        """Test refill at requests_per_minute / 60 tokens per second"""
        bucket = TokenBucket(60, capacity=1, clock=fake_clock, sleep=fake_clock.sleep)
        assert bucket.try_acquire()
        fake_clock.advance(1.0)
        assert bucket.try_acquire()

    def test_acquire_waits_for_token(self, fake_clock):
        """Test that acquire sleeps exactly until the next token"""
        bucket = TokenBucket(60, capacity=1, clock=fake_clock, sleep=fake_clock.sleep)
        bucket.try_acquire()

        assert bucket.acquire(timeout=5.0)
        assert fake_clock.sleeps == [pytest.approx(1.0)]

    def test_acquire_gives_up_when_wait_exceeds_timeout(self, fake_clock):
        """Test that a long wait is refused rather than slept through"""
        bucket = TokenBucket(6, capacity=1, clock=fake_clock, sleep=fake_clock.sleep)
        bucket.try_acquire()

        assert not bucket.acquire(timeout=5.0)
        assert fake_clock.sleeps == []

    def test_invalid_rate(self):
        """Test that a zero rate is rejected"""
        with pytest.raises(ValueError):
            TokenBucket(0)
