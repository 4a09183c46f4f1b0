"""
Unit tests for the token bucket, debouncer and retry policy
"""

import random

import pytest

from bgg_catalog.client import Debouncer, RetryPolicy, TokenBucket


class TestTokenBucket:
    """Test token bucket math and blocking acquire"""

    def test_full_bucket_serves_capacity_immediately(self, fake_clock):
        """Test three tokens are available without waiting"""
        bucket = TokenBucket(3, 3000, clock=fake_clock, sleep=fake_clock.sleep)

        waits = [bucket.acquire() for _ in range(3)]

        assert waits == [0.0, 0.0, 0.0]
        assert fake_clock.sleeps == []

    def test_fourth_request_waits_about_one_second(self, fake_clock):
        """Test the fourth immediate request blocks for ~1000ms"""
        bucket = TokenBucket(3, 3000, clock=fake_clock, sleep=fake_clock.sleep)
        for _ in range(3):
            bucket.acquire()

        waited = bucket.acquire()

        assert waited == pytest.approx(1000, rel=1e-3)
        assert sum(fake_clock.sleeps) == pytest.approx(1.0, rel=1e-3)

    def test_try_acquire_reports_wait_without_taking(self, fake_clock):
        """Test try_acquire returns the wait time when empty"""
        bucket = TokenBucket(3, 3000, clock=fake_clock, sleep=fake_clock.sleep)
        for _ in range(3):
            assert bucket.try_acquire() == 0.0

        assert bucket.try_acquire() == pytest.approx(1000, rel=1e-3)
        fake_clock.now += 0.5
        assert bucket.try_acquire() == pytest.approx(500, rel=1e-3)

    def test_refill_is_capped_at_capacity(self, fake_clock):
        """Test a long idle period does not bank extra tokens"""
        bucket = TokenBucket(3, 3000, clock=fake_clock, sleep=fake_clock.sleep)
        fake_clock.now += 60

        for _ in range(3):
            assert bucket.try_acquire() == 0.0
        assert bucket.try_acquire() > 0

    def test_drain_forces_next_caller_to_wait(self, fake_clock):
        """Test drain empties the bucket"""
        bucket = TokenBucket(3, 3000, clock=fake_clock, sleep=fake_clock.sleep)

        bucket.drain()

        assert bucket.acquire() == pytest.approx(1000, rel=1e-3)

    def test_rejects_oversized_requests(self, fake_clock):
        """Test requesting more than capacity fails instead of blocking forever"""
        bucket = TokenBucket(3, 3000, clock=fake_clock, sleep=fake_clock.sleep)

        with pytest.raises(ValueError):
            bucket.acquire(4)


class TestDebouncer:
    """Test minimum spacing between calls"""

    def test_first_call_does_not_wait(self, fake_clock):
        debouncer = Debouncer(500, clock=fake_clock, sleep=fake_clock.sleep)

        assert debouncer.wait() == 0.0

    def test_back_to_back_calls_are_spaced(self, fake_clock):
        """Test a second immediate call waits the full interval"""
        debouncer = Debouncer(500, clock=fake_clock, sleep=fake_clock.sleep)
        debouncer.wait()

        assert debouncer.wait() == pytest.approx(500)
        assert fake_clock.sleeps == [pytest.approx(0.5)]

    def test_spaced_calls_do_not_wait(self, fake_clock):
        debouncer = Debouncer(500, clock=fake_clock, sleep=fake_clock.sleep)
        debouncer.wait()
        fake_clock.now += 0.6

        assert debouncer.wait() == 0.0


class TestRetryPolicy:
    """Test backoff growth and jitter"""

    def test_backoff_doubles_from_initial_delay(self):
        policy = RetryPolicy()

        assert [policy.compute_delay(n) for n in range(5)] == [1000, 2000, 4000, 8000, 16000]

    def test_attempt_five_is_capped(self):
        """Test attempt 5's delay is capped at 30000ms, not 16000ms"""
        policy = RetryPolicy()

        assert policy.compute_delay(5) == 30000
        assert policy.compute_delay(9) == 30000

    def test_jitter_stays_within_fifteen_percent(self):
        policy = RetryPolicy()
        rng = random.Random(42)

        delays = [policy.jittered_delay(2, rng) for _ in range(200)]

        assert all(3400 <= d <= 4600 for d in delays)
        assert len(set(delays)) > 1
