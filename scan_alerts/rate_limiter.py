"""
Sliding-window rate limiter for external API calls.
Thread-safe, no external dependencies.
"""
import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager

from .constants import (
    RATE_LIMIT_MIN_DELAY,
    RATE_LIMIT_SOFT_RATIO,
    RATE_LIMIT_WINDOW,
    TELEGRAM_RATE_LIMIT,
    VENDOR_RATE_LIMIT,
)
from .logger import logger


class RateLimiter:
    """
    Per-service sliding budget of N calls per window.

    A service's usage is calls in flight plus calls completed inside the
    window. At 80% usage callers are spaced out proportionally to the
    remaining budget; at 100% they block until a slot frees up.

    Usage:
        limiter = RateLimiter()
        with limiter.limit("vendor"):
            ...  # make API call
    """

    DEFAULT_LIMITS = {
        "vendor": VENDOR_RATE_LIMIT,
        "telegram": TELEGRAM_RATE_LIMIT,
    }

    def __init__(self, custom_limits: dict | None = None, window: float = RATE_LIMIT_WINDOW,
                 time_fn=time.monotonic, sleep_fn=time.sleep):
        self._limits = {**self.DEFAULT_LIMITS, **(custom_limits or {})}
        self._window = window
        self._time = time_fn
        self._sleep = sleep_fn
        self._completed: dict[str, deque] = defaultdict(deque)
        self._inflight: dict[str, int] = defaultdict(int)
        self._cond = threading.Condition()

    def _prune(self, service: str, now: float):
        calls = self._completed[service]
        while calls and now - calls[0] >= self._window:
            calls.popleft()

    def _used(self, service: str) -> int:
        return len(self._completed[service]) + self._inflight[service]

    def acquire(self, service: str) -> float:
        """
        Reserve a call slot, waiting if necessary.

        Returns:
            Seconds waited (0 if no wait needed)
        """
        limit = self._limits.get(service, 60)
        waited = 0.0

        with self._cond:
            while True:
                now = self._time()
                self._prune(service, now)
                used = self._used(service)
                if used < limit:
                    break
                calls = self._completed[service]
                block = (calls[0] + self._window - now) if calls else RATE_LIMIT_MIN_DELAY
                logger.warning("rate_limit.waiting", service=service,
                               wait_seconds=round(block, 2), used=used, limit=limit)
                started = self._time()
                self._cond.wait(timeout=max(block, RATE_LIMIT_MIN_DELAY))
                waited += self._time() - started

            delay = 0.0
            if used >= limit * RATE_LIMIT_SOFT_RATIO:
                calls = self._completed[service]
                remaining_window = (self._window - (now - calls[0])) if calls else self._window
                delay = max(remaining_window / max(limit - used, 1), RATE_LIMIT_MIN_DELAY)
                logger.debug("rate_limit.throttle", service=service,
                             delay=round(delay, 3), used=used, limit=limit)
            self._inflight[service] += 1

        if delay:
            # Slot is already reserved; sleep outside the lock
            self._sleep(delay)
            waited += delay
        return waited

    def release(self, service: str):
        """Mark a call as completed; it counts against the window from now"""
        with self._cond:
            if self._inflight[service] > 0:
                self._inflight[service] -= 1
            self._completed[service].append(self._time())
            self._cond.notify_all()

    @contextmanager
    def limit(self, service: str):
        self.acquire(service)
        try:
            yield
        finally:
            self.release(service)

    def wait(self, service: str) -> float:
        """Acquire and immediately release; for fire-and-forget calls"""
        waited = self.acquire(service)
        self.release(service)
        return waited

    def get_remaining(self, service: str) -> int:
        """Get remaining requests for a service in current window."""
        limit = self._limits.get(service, 60)
        with self._cond:
            self._prune(service, self._time())
            return max(0, limit - self._used(service))

    def get_stats(self) -> dict:
        """Get current rate limit stats for all services."""
        stats = {}
        with self._cond:
            now = self._time()
            for service in set(self._completed) | set(self._inflight):
                self._prune(service, now)
                limit = self._limits.get(service, 60)
                calls = self._completed[service]
                stats[service] = {
                    "used": self._used(service),
                    "inflight": self._inflight[service],
                    "limit": limit,
                    "remaining": max(0, limit - self._used(service)),
                    "resets_in": round(max(0.0, calls[0] + self._window - now), 1) if calls else 0.0,
                }
        return stats


# Global singleton instance
_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Get or create the global rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter


def rate_limit(service: str) -> float:
    """
    Convenience function to rate limit a service call.

    Usage:
        rate_limit("telegram")
        session.post(...)
    """
    return get_rate_limiter().wait(service)
