"""
Performance monitoring for the estimation stages.

``tracker`` is the process-wide PerformanceTracker.  The orchestrator wraps
each stage in ``tracker.measure(stage)``; engines that are worth timing on
their own carry the ``@timed`` decorator (DEBUG log only, no metrics).
"""
import time
import logging
import threading
import functools
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional

logger = logging.getLogger("elinstall-perf")


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def timed(func: Callable) -> Callable:
    """
    Log the wall time of a synchronous call at DEBUG.

    Usage::

        @timed
        def calculate_electrical_project(...):
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            duration_ms = _elapsed_ms(start)
            logger.debug(
                f"{func.__qualname__} took {duration_ms} ms",
                extra={"stage": func.__qualname__, "duration_ms": duration_ms},
            )
    return wrapper


@dataclass
class StageStats:
    calls: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    errors: int = 0

    @property
    def avg_ms(self) -> float:
        return round(self.total_ms / self.calls, 2) if self.calls else 0.0


class PerformanceTracker:
    """
    Thread-safe in-memory metrics for estimation runs.

    Per stage: call count, total / max duration and error count.
    Per run: completed estimates and their average duration.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._estimates_processed: int = 0
        self._total_duration_ms: float = 0.0
        self._stages: Dict[str, StageStats] = {}

    def _stats(self, stage: str) -> StageStats:
        return self._stages.setdefault(stage, StageStats())

    # ── Write API ────────────────────────────────────────────────────────────

    def record_estimate_complete(self, duration_ms: float) -> None:
        """Call once per successful estimate."""
        with self._lock:
            self._estimates_processed += 1
            self._total_duration_ms += duration_ms

    def record_stage_duration(self, stage: str, duration_ms: float) -> None:
        with self._lock:
            stats = self._stats(stage)
            stats.calls += 1
            stats.total_ms += duration_ms
            stats.max_ms = max(stats.max_ms, duration_ms)

    def record_stage_error(self, stage: str) -> None:
        with self._lock:
            self._stats(stage).errors += 1

    @contextmanager
    def measure(self, stage: str) -> Iterator[None]:
        """Record the duration of the block; an exception also counts as a stage error."""
        start = time.perf_counter()
        try:
            yield
        except Exception:
            self.record_stage_error(stage)
            raise
        finally:
            self.record_stage_duration(stage, _elapsed_ms(start))

    # ── Read API ─────────────────────────────────────────────────────────────

    def stage(self, stage: str) -> Optional[StageStats]:
        with self._lock:
            stats = self._stages.get(stage)
            return StageStats(**vars(stats)) if stats else None

    def get_metrics(self) -> Dict[str, Any]:
        """
        Snapshot of all collected metrics.

        Keys: estimates_processed, avg_duration_ms, slowest_stage,
        slowest_stage_ms, error_count, error_count_by_stage,
        stage_avg_durations_ms.  Stages that only recorded errors appear in
        the error counts but not in the durations.
        """
        with self._lock:
            timed_stages = {name: s for name, s in self._stages.items() if s.calls}
            slowest = max(timed_stages.items(), key=lambda kv: kv[1].max_ms, default=None)
            errors = {name: s.errors for name, s in self._stages.items() if s.errors}
            return {
                "estimates_processed": self._estimates_processed,
                "avg_duration_ms": (
                    round(self._total_duration_ms / self._estimates_processed, 2)
                    if self._estimates_processed else 0.0
                ),
                "slowest_stage": slowest[0] if slowest else None,
                "slowest_stage_ms": round(slowest[1].max_ms, 2) if slowest else 0.0,
                "error_count": sum(errors.values()),
                "error_count_by_stage": errors,
                "stage_avg_durations_ms": {name: s.avg_ms for name, s in timed_stages.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._estimates_processed = 0
            self._total_duration_ms = 0.0
            self._stages.clear()


tracker = PerformanceTracker()
