"""Performance monitoring utilities for the VesselCost extraction pipeline."""
import time
import logging
import threading
import functools
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("vesselcost-api.perf")


def timed_async(func: Callable) -> Callable:
    """
    Decorator that measures and logs execution time for async functions.

    Usage::

        @timed_async
        async def my_async_function():
            ...
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
            return result
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.debug(
                "async function timed",
                extra={
                    "function": func.__qualname__,
                    "duration_ms": duration_ms,
                },
            )
    return wrapper


class ExtractionTracker:
    """
    Thread-safe in-memory tracker for extraction metrics.

    Tracks:
    - Files scanned and equipment detail calls made
    - Cumulative and average batch duration
    - Slowest single AI call
    - Error count broken down by stage ("scan", "detail", "pricing", "chat")
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._files_scanned: int = 0
        self._equipment_extracted: int = 0
        self._batches_completed: int = 0
        self._total_batch_duration_ms: float = 0.0
        self._error_counts: Dict[str, int] = {}
        self._slowest_call: Optional[str] = None
        self._slowest_call_ms: float = 0.0

    # ------------------------------------------------------------------
    # Public write API
    # ------------------------------------------------------------------

    def record_call(self, label: str, duration_ms: float) -> None:
        """Record one AI call; ``label`` is e.g. "scan:drawing.pdf"."""
        with self._lock:
            if label.startswith("scan:"):
                self._files_scanned += 1
            elif label.startswith("detail:"):
                self._equipment_extracted += 1
            if duration_ms > self._slowest_call_ms:
                self._slowest_call_ms = duration_ms
                self._slowest_call = label

    def record_batch_complete(self, duration_ms: float) -> None:
        """Call once when a scan or extraction batch runs to completion."""
        with self._lock:
            self._batches_completed += 1
            self._total_batch_duration_ms += duration_ms

    def record_error(self, stage: str) -> None:
        with self._lock:
            self._error_counts[stage] = self._error_counts.get(stage, 0) + 1

    # ------------------------------------------------------------------
    # Public read API
    # ------------------------------------------------------------------

    def get_metrics(self) -> Dict[str, Any]:
        """Return a snapshot of all collected metrics."""
        with self._lock:
            avg = (
                round(self._total_batch_duration_ms / self._batches_completed, 2)
                if self._batches_completed > 0
                else 0.0
            )
            return {
                "files_scanned": self._files_scanned,
                "equipment_extracted": self._equipment_extracted,
                "batches_completed": self._batches_completed,
                "avg_batch_duration_ms": avg,
                "slowest_call": self._slowest_call,
                "slowest_call_ms": round(self._slowest_call_ms, 2),
                "error_count": sum(self._error_counts.values()),
                "error_count_by_stage": dict(self._error_counts),
            }

    def reset(self) -> None:
        """Reset all counters (useful in tests)."""
        with self._lock:
            self._files_scanned = 0
            self._equipment_extracted = 0
            self._batches_completed = 0
            self._total_batch_duration_ms = 0.0
            self._error_counts.clear()
            self._slowest_call = None
            self._slowest_call_ms = 0.0


# Module-level singleton — import this instance everywhere else.
tracker = ExtractionTracker()
