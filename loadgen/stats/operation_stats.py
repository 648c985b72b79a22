"""
Per-operation statistics bundles.

`OperationStats` groups the trackers kept for one operation kind (or one
channel): completed operations, durations, result codes, threshold breaches
and, optionally, response-time categories. `JobStatistics` holds the bundles
of a whole job and is what the warm-up/cool-down window starts and stops.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, Iterator, Optional

from loadgen.control.signals import Clock
from loadgen.domain.models import OperationOutcome
from loadgen.stats.trackers import (
    CategoricalTracker,
    IncrementalTracker,
    ResponseTimeCategorizer,
    TimeTracker,
)


class OperationStats:
    def __init__(
        self,
        name: str,
        categorize_response_times: bool = False,
        clock: Clock = time.monotonic,
    ) -> None:
        self.name = name
        self.completed = IncrementalTracker(f"{name} completed", clock)
        self.duration = TimeTracker(f"{name} duration", clock)
        self.result_codes = CategoricalTracker(f"{name} result codes", clock)
        self.threshold_breaches = IncrementalTracker(f"{name} threshold breaches", clock)
        self.response_times: Optional[ResponseTimeCategorizer] = (
            ResponseTimeCategorizer(f"{name} response time categories", clock)
            if categorize_response_times
            else None
        )

    def _trackers(self):
        trackers = [self.completed, self.duration, self.result_codes, self.threshold_breaches]
        if self.response_times is not None:
            trackers.append(self.response_times)
        return trackers

    def start(self) -> None:
        for tracker in self._trackers():
            tracker.start()

    def stop(self) -> None:
        for tracker in self._trackers():
            tracker.stop()

    def record(self, outcome: OperationOutcome) -> None:
        """Account for an operation that reached the target service."""
        self.completed.increment()
        self.duration.record(outcome.duration_ms)
        self.result_codes.increment(outcome.result_code)
        if outcome.exceeded_threshold:
            self.threshold_breaches.increment()
        if self.response_times is not None:
            self.response_times.categorize(outcome.duration_ms)

    def record_failure(self, result_code: str) -> None:
        """Account for an attempt that never produced a timed outcome."""
        self.result_codes.increment(result_code)

    def merge(self, other: "OperationStats") -> None:
        self.completed.merge(other.completed)
        self.duration.merge(other.duration)
        self.result_codes.merge(other.result_codes)
        self.threshold_breaches.merge(other.threshold_breaches)
        if other.response_times is not None:
            if self.response_times is None:
                self.response_times = ResponseTimeCategorizer(
                    f"{self.name} response time categories"
                )
            self.response_times.merge(other.response_times)

    def summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {
            "completed": self.completed.count,
            "rate_per_second": round(self.completed.rate_per_second, 2),
            "result_codes": self.result_codes.counts,
            "threshold_breaches": self.threshold_breaches.count,
            "duration_ms": {
                "count": self.duration.count,
                "avg": round(self.duration.average_ms, 3),
                "min": _round_optional(self.duration.min_ms),
                "max": _round_optional(self.duration.max_ms),
            },
        }
        if self.response_times is not None:
            summary["response_time_categories"] = dict(self.response_times.ordered_counts())
        return summary


def _round_optional(value: Optional[float], decimals: int = 3) -> Optional[float]:
    return round(value, decimals) if value is not None else None


class JobStatistics:
    """Named `OperationStats` bundles created on first use."""

    def __init__(self, categorize_response_times: bool = False, clock: Clock = time.monotonic) -> None:
        self._categorize = categorize_response_times
        self._clock = clock
        self._lock = threading.Lock()
        self._stats: Dict[str, OperationStats] = {}
        self._started = False
        self._stopped = False

    def for_operation(self, name: str) -> OperationStats:
        with self._lock:
            stats = self._stats.get(name)
            if stats is None:
                stats = OperationStats(name, self._categorize, self._clock)
                self._stats[name] = stats
                if self._started:
                    stats.start()
                if self._stopped:
                    stats.stop()
            return stats

    def __iter__(self) -> Iterator[OperationStats]:
        with self._lock:
            return iter(list(self._stats.values()))

    def __contains__(self, name: str) -> bool:
        return name in self._stats

    def start(self) -> None:
        with self._lock:
            self._started = True
            bundles = list(self._stats.values())
        for stats in bundles:
            stats.start()

    def stop(self) -> None:
        with self._lock:
            self._stopped = True
            bundles = list(self._stats.values())
        for stats in bundles:
            stats.stop()

    def summary(self) -> Dict[str, Dict[str, Any]]:
        return {stats.name: stats.summary() for stats in self}


__all__ = ["JobStatistics", "OperationStats"]
