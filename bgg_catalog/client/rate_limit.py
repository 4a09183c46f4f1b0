"""
Throttling primitives for calls against the catalog service.

A token bucket gates every request, a debouncer keeps consecutive calls
apart, and a retry policy computes the backoff between failed attempts.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def _monotonic_ms(clock: Callable[[], float]) -> float:
    return clock() * 1000.0


class TokenBucket:
    """
    Continuously refilling token bucket.

    Acquiring blocks (sleeps) until enough tokens are available instead of
    rejecting the caller.
    """

    def __init__(self, capacity: float = 3.0, refill_window_ms: float = 3000.0,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        if capacity <= 0 or refill_window_ms <= 0:
            raise ValueError("capacity and refill_window_ms must be positive")
        self.capacity = float(capacity)
        self.refill_rate_per_ms = self.capacity / float(refill_window_ms)
        self.tokens = self.capacity
        self._clock = clock
        self._sleep = sleep
        self.last_refill_at = _monotonic_ms(clock)
        self._lock = threading.Lock()

    def _refill(self, now_ms: float) -> None:
        elapsed = max(0.0, now_ms - self.last_refill_at)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate_per_ms)
        self.last_refill_at = now_ms

    def try_acquire(self, tokens: float = 1.0) -> float:
        """
        Take tokens if available.

        Returns:
            0.0 when the tokens were taken, otherwise the milliseconds to wait
            before they would be.
        """
        with self._lock:
            self._refill(_monotonic_ms(self._clock))
            if self.tokens >= tokens:
                self.tokens -= tokens
                return 0.0
            return (tokens - self.tokens) / self.refill_rate_per_ms

    def acquire(self, tokens: float = 1.0) -> float:
        """Block until the tokens are taken. Returns the milliseconds spent waiting."""
        if tokens > self.capacity:
            raise ValueError(f"Cannot acquire {tokens} tokens from a bucket of {self.capacity}")
        waited = 0.0
        while True:
            wait_ms = self.try_acquire(tokens)
            if wait_ms <= 0:
                if waited:
                    logger.debug(f"Rate bucket released after {waited:.0f}ms")
                return waited
            self._sleep(wait_ms / 1000.0)
            waited += wait_ms

    def drain(self) -> None:
        """Empty the bucket so the next caller has to wait for a refill."""
        with self._lock:
            now_ms = _monotonic_ms(self._clock)
            self.tokens = 0.0
            self.last_refill_at = now_ms
        logger.info("Rate bucket drained after upstream throttling")


class Debouncer:
    """Enforces a minimum spacing between consecutive calls."""

    def __init__(self, min_interval_ms: float = 500.0,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.min_interval_ms = float(min_interval_ms)
        self._clock = clock
        self._sleep = sleep
        self._last_call_at: Optional[float] = None
        self._lock = threading.Lock()

    def wait(self) -> float:
        """Sleep until the minimum interval has passed. Returns milliseconds waited."""
        with self._lock:
            waited = 0.0
            now_ms = _monotonic_ms(self._clock)
            if self._last_call_at is not None:
                since = now_ms - self._last_call_at
                if since < self.min_interval_ms:
                    waited = self.min_interval_ms - since
                    logger.debug(f"Debouncing catalog call for {waited:.0f}ms")
                    self._sleep(waited / 1000.0)
            self._last_call_at = _monotonic_ms(self._clock)
            return waited


@dataclass
class RetryPolicy:
    """Exponential backoff with jitter. Attempts are numbered from zero."""
    initial_delay_ms: float = 1000.0
    factor: float = 2.0
    max_delay_ms: float = 30000.0
    max_attempts: int = 5
    jitter: float = 0.15

    def compute_delay(self, attempt: int) -> float:
        """Delay in ms after the given attempt, before jitter."""
        return min(self.max_delay_ms, self.initial_delay_ms * (self.factor ** attempt))

    def jittered_delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        base = self.compute_delay(attempt)
        spread = (rng or random).uniform(-self.jitter, self.jitter)
        return max(0.0, base * (1.0 + spread))
