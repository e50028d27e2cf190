"""
Token Bucket Rate Limiter

Shared across all reconciliation workers so that N concurrent workers still
respect one "requests per window" budget against the PMS.

- tokens: currently available tokens (starts at capacity)
- refill_rate: tokens per second
- acquire(): blocks (via injected sleep) until a token is available
"""

import threading
import time
from typing import Callable


class TokenBucketRateLimiter:
    """
    Thread-safe token bucket.

    The clock and sleep are injectable so tests run without real waiting.
    """

    def __init__(
        self,
        requests_per_minute: int,
        capacity: float = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self.refill_rate = requests_per_minute / 60.0
        self.capacity = float(capacity if capacity is not None else requests_per_minute)
        self.tokens = self.capacity
        self._clock = clock
        self._sleep = sleep
        self._last_refill_at = clock()
        self._lock = threading.Lock()

        # Stats
        self.total_acquired = 0
        self.total_waited_seconds = 0.0

    def _refill(self) -> float:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill_at)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self._last_refill_at = now
        return self.tokens

    def try_acquire(self) -> bool:
        """Try to consume a token. Returns True if successful, False if empty."""
        with self._lock:
            self._refill()
            if self.tokens >= 1.0:
                self.tokens -= 1.0
                self.total_acquired += 1
                return True
            return False

    def wait_time(self) -> float:
        """Seconds until a token is available."""
        with self._lock:
            current = self._refill()
            if current >= 1.0:
                return 0.0
            return (1.0 - current) / self.refill_rate

    def acquire(self) -> float:
        """
        Block until a token is consumed.

        Returns total seconds waited.
        """
        waited = 0.0
        while not self.try_acquire():
            delay = self.wait_time()
            if delay > 0:
                self._sleep(delay)
                waited += delay
        self.total_waited_seconds += waited
        return waited

    def __repr__(self):
        return f"<TokenBucketRateLimiter tokens={self.tokens:.1f}/{self.capacity:.0f}>"
