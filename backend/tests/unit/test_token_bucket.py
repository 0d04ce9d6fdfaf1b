"""
Unit Tests: TokenBucket Rate Limiter
=====================================

Tests the TokenBucket used to pace trip store calls during fleet scans.

Test Strategy:
- Single-threaded behavior (basic algorithm, timeouts)
- Multi-threaded behavior (lock released while waiting)
"""

import pytest
import time
import threading
from utils.rate_limiter import TokenBucket


class TestTokenBucket:
    """Unit tests for TokenBucket rate limiter."""

    def test_initialization_custom_rate(self):
        """TokenBucket should start full."""
        bucket = TokenBucket(rate=5.0)
        assert bucket.rate == 5.0
        assert bucket.tokens == 5.0

    def test_fractional_rate_holds_one_token(self):
        """Rates below 1/s still allow one call up front."""
        bucket = TokenBucket(rate=0.5)
        assert bucket.capacity == 1.0
        assert bucket.try_acquire() is True

    @pytest.mark.parametrize("rate", [0, -1.0])
    def test_rate_must_be_positive(self, rate):
        with pytest.raises(ValueError):
            TokenBucket(rate=rate)

    def test_acquire_with_available_token(self):
        """acquire() should return immediately when a token is available."""
        bucket = TokenBucket(rate=1.0)

        start = time.monotonic()
        assert bucket.acquire() is True
        elapsed = time.monotonic() - start

        assert elapsed < 0.1, f"acquire() took {elapsed}s, expected < 0.1s"
        assert bucket.tokens < 1.0

    def test_acquire_blocks_until_refill(self):
        """acquire() should wait for the next token."""
        bucket = TokenBucket(rate=4.0)
        for _ in range(4):
            bucket.acquire()

        start = time.monotonic()
        bucket.acquire()
        elapsed = time.monotonic() - start

        # One token every 0.25s
        assert 0.15 <= elapsed <= 0.5, f"acquire() took {elapsed}s, expected ~0.25s"

    def test_acquire_times_out(self):
        """acquire(timeout) should give up and report False."""
        bucket = TokenBucket(rate=0.5)
        bucket.acquire()

        start = time.monotonic()
        acquired = bucket.acquire(timeout=0.1)
        elapsed = time.monotonic() - start

        assert acquired is False
        assert elapsed < 0.5

    def test_try_acquire_does_not_block(self):
        bucket = TokenBucket(rate=1.0)
        bucket.try_acquire()

        start = time.monotonic()
        result = bucket.try_acquire()
        elapsed = time.monotonic() - start

        assert result is False
        assert elapsed < 0.1

    def test_reset_refills_bucket(self):
        bucket = TokenBucket(rate=5.0)
        bucket.acquire()
        bucket.acquire()

        bucket.reset()

        assert bucket.tokens == 5.0

    def test_get_available_tokens(self):
        bucket = TokenBucket(rate=2.0)
        assert bucket.get_available_tokens() == 2.0

        bucket.acquire()
        tokens = bucket.get_available_tokens()
        assert 0.9 <= tokens <= 1.1


class TestTokenBucketConcurrency:
    """Concurrent workers share one bucket."""

    def test_concurrent_acquire_is_paced(self):
        """Six workers at 10/s with capacity 10 all finish without serializing on the lock."""
        bucket = TokenBucket(rate=10.0)
        for _ in range(10):
            bucket.acquire()
        results = []

        def worker():
            results.append(bucket.acquire(timeout=2.0))

        threads = [threading.Thread(target=worker) for _ in range(6)]
        start = time.monotonic()
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        elapsed = time.monotonic() - start

        assert results == [True] * 6
        # Six tokens at 10/s take ~0.6s
        assert 0.4 <= elapsed <= 1.5, f"Concurrent acquire took {elapsed}s"
