"""
Fixed-window rate limiting as a FastAPI dependency.

Counts are kept in process memory and keyed by client IP, so every replica
enforces its own limit.
"""
import math
import time
from threading import Lock
from typing import Callable

from fastapi import HTTPException, Request, status

from rebooking.lib.logging import get_logger, log_with_context

logger = get_logger(__name__)

CLEANUP_INTERVAL_SECONDS = 60

# Every limiter created here, so tests can clear them all
_limiters: list["FixedWindowRateLimiter"] = []


class FixedWindowRateLimiter:
    """Allows `limit` hits per key in each window of `window_seconds`."""

    def __init__(self, limit: int, window_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = Lock()
        # key -> (window reset time, hits in window)
        self._windows: dict[str, tuple[float, int]] = {}
        self._next_cleanup = 0.0

    def hit(self, key: str) -> tuple[bool, int]:
        """
        Count one attempt for key.

        Returns:
            (allowed, seconds until the key's window resets)
        """
        now = self._clock()
        with self._lock:
            self._cleanup(now)
            reset_at, count = self._windows.get(key, (now + self.window_seconds, 0))
            if now >= reset_at:
                reset_at, count = now + self.window_seconds, 0

            allowed = count < self.limit
            if allowed:
                count += 1
            self._windows[key] = (reset_at, count)

        return allowed, max(0, math.ceil(reset_at - now))

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _cleanup(self, now: float) -> None:
        if now < self._next_cleanup:
            return
        self._windows = {k: v for k, v in self._windows.items() if v[0] > now}
        self._next_cleanup = now + CLEANUP_INTERVAL_SECONDS


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def create_rate_limiter(limit: int, window_seconds: int, key_prefix: str, message: str):
    """
    Create a rate limiting dependency.

    Example usage:
        booking_rate_limit = create_rate_limiter(10, 60, "booking_attempts", "Too many attempts")

        @router.post("/quick")
        def quick(_: None = Depends(booking_rate_limit)):
            ...
    """
    limiter = FixedWindowRateLimiter(limit, window_seconds)
    _limiters.append(limiter)

    def rate_limiter(request: Request) -> None:
        key = f"{key_prefix}:{client_ip(request)}"
        allowed, retry_after = limiter.hit(key)
        if not allowed:
            log_with_context(
                logger,
                "warning",
                "Rate limit exceeded",
                key=key,
                limit=limit,
                window_seconds=window_seconds,
            )
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=message,
                headers={"Retry-After": str(retry_after)},
            )

    return rate_limiter


def reset_rate_limits() -> None:
    """Forget all counted attempts (for testing)."""
    for limiter in _limiters:
        limiter.reset()
