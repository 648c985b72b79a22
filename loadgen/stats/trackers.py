"""
In-process statistics trackers.

Trackers are shared by every worker of a job, so all mutation happens under a
lock. They accept updates regardless of their start/stop lifecycle: whether an
outcome belongs to the measured window is decided by the driver before it
records anything.
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from typing import Dict, List, Optional, Tuple

from loadgen.control.signals import Clock


class _Lifecycle:
    def __init__(self, name: str, clock: Clock = time.monotonic) -> None:
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self.started_at: Optional[float] = None
        self.stopped_at: Optional[float] = None

    def start(self) -> None:
        with self._lock:
            if self.started_at is None:
                self.started_at = self._clock()

    def stop(self) -> None:
        with self._lock:
            if self.started_at is not None and self.stopped_at is None:
                self.stopped_at = self._clock()

    @property
    def active(self) -> bool:
        return self.started_at is not None and self.stopped_at is None

    @property
    def elapsed_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.stopped_at if self.stopped_at is not None else self._clock()
        return max(end - self.started_at, 0.0)


class IncrementalTracker(_Lifecycle):
    """Monotonic counter with a rate over its active period."""

    def __init__(self, name: str, clock: Clock = time.monotonic) -> None:
        super().__init__(name, clock)
        self._count = 0

    def increment(self, amount: int = 1) -> None:
        with self._lock:
            self._count += amount

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def rate_per_second(self) -> float:
        elapsed = self.elapsed_seconds
        return self.count / elapsed if elapsed > 0 else 0.0

    def merge(self, other: "IncrementalTracker") -> None:
        self.increment(other.count)


class CategoricalTracker(_Lifecycle):
    """Counts occurrences per label (result codes, response-time buckets)."""

    def __init__(self, name: str, clock: Clock = time.monotonic) -> None:
        super().__init__(name, clock)
        self._counts: Counter = Counter()

    def increment(self, label: str, amount: int = 1) -> None:
        with self._lock:
            self._counts[label] += amount

    @property
    def counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    @property
    def total(self) -> int:
        with self._lock:
            return sum(self._counts.values())

    def merge(self, other: "CategoricalTracker") -> None:
        for label, amount in other.counts.items():
            self.increment(label, amount)


class TimeTracker(_Lifecycle):
    """
    Accumulates operation durations in milliseconds.

    `start_timer` / `stop_timer` time a block on the calling thread; `record`
    adds a duration measured elsewhere (for example by the channel).
    """

    def __init__(self, name: str, clock: Clock = time.monotonic) -> None:
        super().__init__(name, clock)
        self._local = threading.local()
        self._count = 0
        self._total_ms = 0.0
        self._min_ms: Optional[float] = None
        self._max_ms: Optional[float] = None
        self._last_ms: Optional[float] = None

    def start_timer(self) -> None:
        self._local.started = self._clock()

    def stop_timer(self) -> float:
        started = getattr(self._local, "started", None)
        if started is None:
            raise RuntimeError(f"Timer {self.name!r} was not started on this thread")
        self._local.started = None
        duration_ms = (self._clock() - started) * 1000.0
        self.record(duration_ms)
        return duration_ms

    def record(self, duration_ms: float) -> None:
        with self._lock:
            self._count += 1
            self._total_ms += duration_ms
            self._last_ms = duration_ms
            self._min_ms = duration_ms if self._min_ms is None else min(self._min_ms, duration_ms)
            self._max_ms = duration_ms if self._max_ms is None else max(self._max_ms, duration_ms)

    @property
    def last_duration_ms(self) -> Optional[float]:
        with self._lock:
            return self._last_ms

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def total_ms(self) -> float:
        with self._lock:
            return self._total_ms

    @property
    def min_ms(self) -> Optional[float]:
        with self._lock:
            return self._min_ms

    @property
    def max_ms(self) -> Optional[float]:
        with self._lock:
            return self._max_ms

    @property
    def average_ms(self) -> float:
        with self._lock:
            return self._total_ms / self._count if self._count else 0.0

    def merge(self, other: "TimeTracker") -> None:
        with other._lock:
            count, total = other._count, other._total_ms
            low, high, last = other._min_ms, other._max_ms, other._last_ms
        if not count:
            return
        with self._lock:
            self._count += count
            self._total_ms += total
            self._min_ms = low if self._min_ms is None else min(self._min_ms, low)
            self._max_ms = high if self._max_ms is None else max(self._max_ms, high)
            self._last_ms = last


# Upper bounds in milliseconds (exclusive) and their labels.
RESPONSE_TIME_BUCKETS: List[Tuple[float, str]] = [
    (1, "Less Than 1ms"),
    (2, "Between 1ms and 2ms"),
    (3, "Between 2ms and 3ms"),
    (4, "Between 3ms and 4ms"),
    (5, "Between 4ms and 5ms"),
    (10, "Between 5ms and 10ms"),
    (20, "Between 10ms and 20ms"),
    (30, "Between 20ms and 30ms"),
    (40, "Between 30ms and 40ms"),
    (50, "Between 40ms and 50ms"),
    (100, "Between 50ms and 100ms"),
    (200, "Between 100ms and 200ms"),
    (300, "Between 200ms and 300ms"),
    (400, "Between 300ms and 400ms"),
    (500, "Between 400ms and 500ms"),
    (1_000, "Between 500ms and 1s"),
    (2_000, "Between 1s and 2s"),
    (3_000, "Between 2s and 3s"),
    (4_000, "Between 3s and 4s"),
    (5_000, "Between 4s and 5s"),
    (10_000, "Between 5s and 10s"),
    (20_000, "Between 10s and 20s"),
    (30_000, "Between 20s and 30s"),
    (60_000, "Between 30s and 60s"),
]
LONGEST_BUCKET = "Longer Than 60s"


def categorize_response_time(duration_ms: float) -> str:
    for bound, label in RESPONSE_TIME_BUCKETS:
        if duration_ms < bound:
            return label
    return LONGEST_BUCKET


class ResponseTimeCategorizer(CategoricalTracker):
    """Categorical tracker keyed by response-time bucket."""

    def categorize(self, duration_ms: float) -> str:
        label = categorize_response_time(duration_ms)
        self.increment(label)
        return label

    def ordered_counts(self) -> List[Tuple[str, int]]:
        counts = self.counts
        labels = [label for _, label in RESPONSE_TIME_BUCKETS] + [LONGEST_BUCKET]
        return [(label, counts[label]) for label in labels if label in counts]


__all__ = [
    "LONGEST_BUCKET",
    "RESPONSE_TIME_BUCKETS",
    "CategoricalTracker",
    "IncrementalTracker",
    "ResponseTimeCategorizer",
    "TimeTracker",
    "categorize_response_time",
]
