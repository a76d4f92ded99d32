"""
Memory-based fixed-window rate limiter.
The limiter instance lives on the ServiceContainer; ``rate_limit`` builds a
FastAPI dependency that looks it up per request.
"""
import threading
import time
from typing import Callable, Dict, Tuple

from fastapi import Request, HTTPException


class RateLimiter:
    """Per-key request counts in fixed windows: {key: (window_start, window, count)}.

    Expired windows are dropped at most once per ``purge_interval`` seconds,
    so idle keys do not accumulate.
    """

    def __init__(self, clock: Callable[[], float] = time.time, purge_interval: float = 60.0):
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, Tuple[float, int, int]] = {}
        self._purge_interval = purge_interval
        self._last_purge = clock()

    def __len__(self) -> int:
        return len(self._windows)

    def hit(self, key: str, requests: int, window: int) -> float:
        """Count one request; returns 0 when allowed, else seconds to wait."""
        now = self._clock()
        with self._lock:
            if now - self._last_purge >= self._purge_interval:
                self._purge(now)
            start, _, count = self._windows.get(key, (now, window, 0))
            if now - start >= window:
                start, count = now, 0
            if count >= requests:
                return window - (now - start)
            self._windows[key] = (start, window, count + 1)
            return 0.0

    def _purge(self, now: float) -> None:
        expired = [key for key, (start, window, _) in self._windows.items() if now - start >= window]
        for key in expired:
            del self._windows[key]
        self._last_purge = now


def rate_limit(requests: int, window: int):
    """
    Dependency for rate limiting.
    Example: Depends(rate_limit(requests=5, window=60))
    """
    def limiter(request: Request):
        ip = request.client.host if request.client else "unknown"
        key = f"{request.url.path}:{ip}"
        wait = request.app.state.container.rate_limiter.hit(key, requests, window)
        if wait:
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Try again in {int(wait)} seconds.",
            )
        return True

    return limiter
