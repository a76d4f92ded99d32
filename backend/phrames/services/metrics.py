"""
Metrics — Request/error rate tracking and slow-operation timing.

Owned by the ServiceContainer and passed to callers; there is no module-level
tracker.
"""
import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

SLOW_OPERATION_MS = 3000


class ErrorRateTracker:
    """Counts requests and errors in a fixed, resetting time window."""

    def __init__(
        self,
        window_seconds: float = 60.0,
        alert_rate: float = 0.1,
        alert_min_requests: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self.alert_rate = alert_rate
        self.alert_min_requests = alert_min_requests
        self._clock = clock
        self._lock = threading.Lock()
        self._requests = 0
        self._errors = 0
        self._window_start = clock()

    def _roll_window(self) -> None:
        now = self._clock()
        if now - self._window_start > self.window_seconds:
            self._requests = 0
            self._errors = 0
            self._window_start = now

    def record_request(self) -> None:
        with self._lock:
            self._roll_window()
            self._requests += 1

    def record_error(self) -> None:
        with self._lock:
            self._roll_window()
            self._errors += 1
        if self.should_alert():
            logger.error("High error rate detected: %.1f%%", self.error_rate() * 100)

    def error_rate(self) -> float:
        with self._lock:
            self._roll_window()
            return self._errors / self._requests if self._requests else 0.0

    def should_alert(self) -> bool:
        with self._lock:
            requests = self._requests
        return requests > self.alert_min_requests and self.error_rate() > self.alert_rate


class PerformanceTracker:
    """Context manager timing one operation.

    Usage:
        with metrics.track("webhook_processing"):
            ...
    """

    def __init__(self, operation: str, errors: Optional[ErrorRateTracker] = None):
        self.operation = operation
        self.errors = errors
        self.duration_ms: Optional[int] = None
        self._start = 0.0

    def __enter__(self):
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.duration_ms = int((time.perf_counter() - self._start) * 1000)
        success = exc_type is None
        if not success and self.errors is not None:
            self.errors.record_error()
        if self.duration_ms > SLOW_OPERATION_MS:
            logger.warning("Slow operation: %s took %dms", self.operation, self.duration_ms)
        logger.debug(
            "Operation completed: %s (%dms, success=%s)",
            self.operation, self.duration_ms, success,
        )
        return False


class Metrics:
    """Process-wide metrics handle, constructed once per container."""

    def __init__(self, errors: Optional[ErrorRateTracker] = None):
        self.errors = errors or ErrorRateTracker()

    def track(self, operation: str) -> PerformanceTracker:
        return PerformanceTracker(operation, self.errors)

    def snapshot(self) -> dict:
        return {"error_rate": round(self.errors.error_rate(), 4)}
