"""
Rate Limiter Utilities
=======================

TokenBucket implementation for rate limiting calls to the trip store during
fleet-wide scans.

The lock is released while sleeping so concurrent scan workers are not
serialized behind a single waiter.
"""

import time
import threading
from typing import Optional


class TokenBucket:
    """Rate limiter using token bucket algorithm.

    Thread-safe; shared by every worker of a fleet scan.

    Usage:
        ```python
        rate_limiter = TokenBucket(rate=5.0)  # 5 store calls per second

        def fetch(vehicle_id):
            if not rate_limiter.acquire(timeout=30):
                raise TimeoutError("rate limiter wait exceeded")
            return store.get_vehicle_trips(vehicle_id)
        ```
    """

    def __init__(self, rate: float = 1.0):
        """Initialize token bucket.

        Args:
            rate: Tokens per second (e.g., 1.0 = 1 request/second)
        """
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.capacity = max(rate, 1.0)
        self.tokens = self.capacity
        self.last_update = time.monotonic()
        self.lock = threading.Lock()

    def _refill(self, now: float):
        elapsed = now - self.last_update
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.last_update = now

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """Block until a token is available, then consume it.

        Args:
            timeout: Maximum seconds to wait; None waits indefinitely

        Returns:
            True if a token was consumed, False if the timeout elapsed first
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            with self.lock:
                now = time.monotonic()
                self._refill(now)

                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    return True

                wait_time = (1.0 - self.tokens) / self.rate

            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                wait_time = min(wait_time, remaining)

            # Sleep outside the lock so other workers can proceed
            time.sleep(wait_time)

    def try_acquire(self) -> bool:
        """Try to acquire a token without blocking.

        Returns:
            True if token acquired, False if no tokens available
        """
        with self.lock:
            self._refill(time.monotonic())

            if self.tokens >= 1.0:
                self.tokens -= 1.0
                return True

            return False

    def reset(self):
        """Reset the token bucket to full capacity."""
        with self.lock:
            self.tokens = self.capacity
            self.last_update = time.monotonic()

    def get_available_tokens(self) -> float:
        """Get current number of available tokens (for testing/debugging)."""
        with self.lock:
            elapsed = time.monotonic() - self.last_update
            return min(self.capacity, self.tokens + elapsed * self.rate)
