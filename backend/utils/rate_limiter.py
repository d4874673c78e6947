"""
Rate Limiting Utilities
Sliding-window request limiter used on the authentication endpoints
"""

import logging
import math
import threading
import time
from collections import deque
from typing import Deque, Dict, Optional

from fastapi import Request, Response

from services.exceptions import RateLimitError

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Allows at most `max_requests` hits per `window_seconds` for each key."""

    def __init__(self, max_requests: int = 5, window_seconds: float = 15 * 60):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = time.monotonic()

    def hit(self, key: str) -> int:
        """
        Record a request for `key`.

        Returns:
            Number of requests still allowed in the current window

        Raises:
            RateLimitError: If the key has used up its window
        """
        now = time.monotonic()
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)

            hits = self._hits.setdefault(key, deque())
            self._expire(hits, now)

            if len(hits) >= self.max_requests:
                logger.warning(f"Rate limit exceeded for {key}")
                raise RateLimitError(
                    headers=self.headers(0, self._reset_after(hits, now))
                )

            hits.append(now)
            return self.max_requests - len(hits)

    def reset_after(self, key: str) -> int:
        """Seconds until the oldest hit for `key` leaves the window."""
        now = time.monotonic()
        with self._lock:
            return self._reset_after(self._hits.get(key), now)

    def headers(self, remaining: int, reset_after: int) -> Dict[str, str]:
        limit, remaining, reset = str(self.max_requests), str(remaining), str(reset_after)
        return {
            "RateLimit-Limit": limit,
            "RateLimit-Remaining": remaining,
            "RateLimit-Reset": reset,
            "X-RateLimit-Limit": limit,
            "X-RateLimit-Remaining": remaining,
        }

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)

    def __len__(self) -> int:
        return len(self._hits)

    def _expire(self, hits: Deque[float], now: float) -> None:
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        # Drop keys whose whole window has passed
        for key in list(self._hits):
            hits = self._hits[key]
            self._expire(hits, now)
            if not hits:
                del self._hits[key]
        self._last_sweep = now

    def _reset_after(self, hits: Optional[Deque[float]], now: float) -> int:
        if not hits:
            return 0
        return max(math.ceil(hits[0] + self.window_seconds - now), 0)


def client_ip(request: Request, trust_forwarded_for: bool = False) -> str:
    """
    Address requests are limited by.

    `X-Forwarded-For` is client controlled, so it is only honoured when the app
    runs behind a proxy that overwrites it.
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def auth_rate_limit(request: Request, response: Response) -> None:
    """Dependency guarding register/login with the app's auth limiter"""
    limiter: SlidingWindowRateLimiter = request.app.state.auth_rate_limiter
    key = client_ip(request, request.app.state.settings.trust_forwarded_for)

    remaining = limiter.hit(key)
    response.headers.update(limiter.headers(remaining, limiter.reset_after(key)))
