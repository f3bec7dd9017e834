"""
Per-backend rate limiting for synthesis calls.

Every synthesis backend is rate limited by its provider, which is why the
engine generates candidates one at a time. Each backend gets its own token
bucket:
- A steady refill rate with a small burst capacity
- A minimum spacing between consecutive requests
- Exponential backoff after 429 responses (30s, doubling, capped at 5 minutes)
- Capacity that shrinks after 429s and recovers on success
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

BASE_BACKOFF_SECONDS = 30.0
MAX_BACKOFF_SECONDS = 300.0


@dataclass(frozen=True, slots=True)
class RateLimit:
    requests_per_minute: int
    burst_capacity: int
    min_interval_seconds: float


# Replicate's credit tier allows 6 req/min; stay at 5. Gemini's free tier is
# more generous but image generation is still throttled.
DEFAULT_LIMITS: Mapping[str, RateLimit] = {
    "flux_pulid": RateLimit(requests_per_minute=5, burst_capacity=3, min_interval_seconds=1.2),
    "gemini_flash": RateLimit(requests_per_minute=10, burst_capacity=3, min_interval_seconds=1.0),
    "gemini_exp": RateLimit(requests_per_minute=10, burst_capacity=3, min_interval_seconds=1.0),
}
FALLBACK_LIMIT = RateLimit(requests_per_minute=5, burst_capacity=3, min_interval_seconds=1.2)


class BackendRateLimiter:
    """
    Thread-safe token bucket for one backend.

    `clock` and `sleep` are injectable so tests can drive time by hand.
    """

    def __init__(
        self,
        backend_id: str,
        limit: RateLimit = FALLBACK_LIMIT,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.backend_id = backend_id
        self.limit = limit
        self._clock = clock
        self._sleep = sleep

        self.tokens = float(limit.burst_capacity)
        self.max_tokens = float(limit.burst_capacity)
        self.refill_rate = limit.requests_per_minute / 60.0
        self.last_refill = clock()

        self.request_times: deque = deque(maxlen=max(1, limit.requests_per_minute))
        self.last_request_time = 0.0

        self.rate_limited_until: Optional[float] = None
        self.consecutive_429s = 0
        self.backoff_multiplier = 1.0

        self.lock = threading.RLock()

        logger.info(
            f"Rate limiter for {backend_id}: "
            f"{limit.requests_per_minute} req/min, "
            f"burst: {limit.burst_capacity}, "
            f"min interval: {limit.min_interval_seconds}s"
        )

    def _refill_tokens(self) -> None:
        now = self._clock()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def _backoff_remaining(self) -> float:
        """Seconds left in the current 429 backoff, resetting the state once it has expired."""
        if self.rate_limited_until is None:
            return 0.0
        remaining = self.rate_limited_until - self._clock()
        if remaining > 0:
            return remaining
        self.rate_limited_until = None
        self.consecutive_429s = 0
        self.backoff_multiplier = 1.0
        self.max_tokens = float(self.limit.burst_capacity)
        logger.info("%s backoff expired, resuming normal operation", self.backend_id)
        return 0.0

    def backoff_seconds(self) -> float:
        """30s after the first 429, doubling per consecutive 429, capped at 5 minutes."""
        return min(BASE_BACKOFF_SECONDS * 2 ** max(0, self.consecutive_429s - 1), MAX_BACKOFF_SECONDS)

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Block until a request may be sent.

        Returns False if `timeout` seconds pass first; None waits forever.
        """
        start = self._clock()
        while True:
            with self.lock:
                wait = self._backoff_remaining()
                if wait <= 0:
                    self._refill_tokens()
                    if self.tokens >= 1.0:
                        now = self._clock()
                        gap = now - self.last_request_time
                        if gap < self.limit.min_interval_seconds:
                            self._sleep(self.limit.min_interval_seconds - gap)
                            now = self._clock()
                        self.tokens -= 1.0
                        self.last_request_time = now
                        self.request_times.append(now)
                        logger.debug(
                            "%s token acquired (%.1f/%.1f left)", self.backend_id, self.tokens, self.max_tokens
                        )
                        return True
                    wait = 0.1
                else:
                    logger.warning(
                        "%s rate limited: waiting %.1fs (consecutive 429s: %d)",
                        self.backend_id,
                        wait,
                        self.consecutive_429s,
                    )

            if timeout is not None and self._clock() - start >= timeout:
                logger.error("%s rate limiter timeout reached", self.backend_id)
                return False
            self._sleep(min(1.0, wait))

    def report_429(self) -> float:
        """Start (or extend) a backoff period and shrink burst capacity. Returns the backoff in seconds."""
        with self.lock:
            self.consecutive_429s += 1
            backoff = self.backoff_seconds()
            self.rate_limited_until = self._clock() + backoff
            self.backoff_multiplier = max(0.5, self.backoff_multiplier * 0.8)
            self.max_tokens = self.limit.burst_capacity * self.backoff_multiplier
            self.tokens = min(self.tokens, self.max_tokens)
            logger.error(
                f"{self.backend_id} returned 429 (consecutive: {self.consecutive_429s}). "
                f"Backing off for {backoff:.1f}s, burst capacity now {self.max_tokens:.1f}"
            )
            return backoff

    def report_success(self) -> None:
        with self.lock:
            if self.consecutive_429s > 0:
                self.backoff_multiplier = min(1.0, self.backoff_multiplier * 1.1)
                self.max_tokens = self.limit.burst_capacity * self.backoff_multiplier
                self.consecutive_429s -= 1

    def get_stats(self) -> dict:
        with self.lock:
            cutoff = self._clock() - 60.0
            return {
                "backend_id": self.backend_id,
                "tokens_available": self.tokens,
                "max_tokens": self.max_tokens,
                "requests_last_minute": sum(1 for t in self.request_times if t > cutoff),
                "max_requests_per_minute": self.limit.requests_per_minute,
                "is_rate_limited": self._backoff_remaining() > 0,
                "consecutive_429s": self.consecutive_429s,
                "rate_limited_until": (
                    datetime.fromtimestamp(self.rate_limited_until).isoformat()
                    if self.rate_limited_until
                    else None
                ),
            }


_limiters: Dict[str, BackendRateLimiter] = {}
_limiters_lock = threading.Lock()


def get_rate_limiter(backend_id: str) -> BackendRateLimiter:
    """Get or create the process-wide limiter for a backend."""
    limiter = _limiters.get(backend_id)
    if limiter is None:
        with _limiters_lock:
            limiter = _limiters.get(backend_id)
            if limiter is None:
                limiter = BackendRateLimiter(backend_id, DEFAULT_LIMITS.get(backend_id, FALLBACK_LIMIT))
                _limiters[backend_id] = limiter
    return limiter


def get_rate_limiter_stats() -> Dict[str, dict]:
    with _limiters_lock:
        limiters = list(_limiters.values())
    return {limiter.backend_id: limiter.get_stats() for limiter in limiters}
