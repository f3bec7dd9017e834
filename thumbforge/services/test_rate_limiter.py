"""
Tests for the per-backend token bucket.

Time is driven by a fake clock so nothing actually sleeps.
"""

import pytest

from thumbforge.services.rate_limiter import (
    BackendRateLimiter,
    RateLimit,
    get_rate_limiter,
    get_rate_limiter_stats,
)


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def make_limiter(limit=RateLimit(requests_per_minute=5, burst_capacity=3, min_interval_seconds=1.2)):
    clock = FakeClock()
    return BackendRateLimiter("test", limit, clock=clock, sleep=clock.sleep), clock


def test_burst_then_throttle():
    limiter, clock = make_limiter()
    start = clock.now

    assert all(limiter.acquire(timeout=5) for _ in range(3))
    # Burst requests are still spaced by the minimum interval.
    assert clock.now - start == pytest.approx(2.4)

    # The bucket is nearly empty; one token takes 12s to refill at 5/min.
    assert limiter.acquire(timeout=5) is False
    assert limiter.acquire(timeout=None) is True


def test_backoff_doubles_and_caps():
    limiter, _ = make_limiter()
    backoffs = [limiter.report_429() for _ in range(6)]
    assert backoffs == [30, 60, 120, 240, 300, 300]


def test_acquire_waits_out_backoff():
    limiter, clock = make_limiter()
    limiter.report_429()

    assert limiter.acquire(timeout=10) is False
    assert limiter.get_stats()["is_rate_limited"] is True

    clock.now += 30
    assert limiter.acquire(timeout=1) is True
    stats = limiter.get_stats()
    assert stats["consecutive_429s"] == 0
    assert stats["is_rate_limited"] is False
    assert stats["max_tokens"] == 3


def test_429_shrinks_capacity_and_success_recovers_it():
    limiter, _ = make_limiter()

    limiter.report_429()
    assert limiter.max_tokens < 3
    shrunk = limiter.max_tokens

    limiter.report_success()
    assert limiter.consecutive_429s == 0
    assert shrunk < limiter.max_tokens <= 3


def test_registry_returns_one_limiter_per_backend():
    assert get_rate_limiter("gemini_flash") is get_rate_limiter("gemini_flash")
    assert get_rate_limiter("flux_pulid").limit.requests_per_minute == 5
    assert get_rate_limiter("something-new").limit.burst_capacity == 3
    assert "gemini_flash" in get_rate_limiter_stats()
