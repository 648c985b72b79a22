"""
Process-level resource sampling around a load job.

``profile_block`` wraps a job run and records wall-clock time, CPU percent and
the peaks reached while workers were active: resident set size and the number
of live OS threads in this process. Peaks come from a daemon thread polling
``psutil`` so short spikes during a phase are not lost between the start and
end snapshots.

Usage example:
    from loadgen.utils.profiler import profile_block

    with profile_block("add_delete") as stats:
        job.execute()

    print(stats.duration_seconds, stats.peak_rss_bytes, stats.peak_threads)
"""

from __future__ import annotations

import contextlib
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Generator, Optional

import psutil


@dataclass
class ProfileStats:
    """Measurements for one profiled job."""

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    peak_rss_bytes: Optional[int] = field(default=None)
    peak_threads: Optional[int] = field(default=None)
    cpu_percent: Optional[float] = field(default=None)
    samples: int = field(default=0)
    extra: dict[str, Any] = field(default_factory=dict)


class _PeakSampler(threading.Thread):
    """Polls the process until stopped, keeping the highest readings."""

    def __init__(self, process: psutil.Process, label: str, interval: float) -> None:
        super().__init__(name=f"profiler-{label}", daemon=True)
        self.process = process
        self.interval = interval
        self.peak_rss = 0
        self.peak_threads = 0
        self.samples = 0
        self._stopped = threading.Event()

    def sample(self) -> bool:
        try:
            with self.process.oneshot():
                rss = self.process.memory_info().rss
                threads = self.process.num_threads()
        except psutil.Error:
            return False
        self.peak_rss = max(self.peak_rss, rss)
        self.peak_threads = max(self.peak_threads, threads)
        self.samples += 1
        return True

    def run(self) -> None:
        while not self._stopped.is_set():
            if not self.sample():
                return
            self._stopped.wait(timeout=self.interval)

    def stop(self) -> None:
        self._stopped.set()
        self.join(timeout=1.0)


@contextlib.contextmanager
def profile_block(label: str, sample_interval_ms: int = 50) -> Generator[ProfileStats, None, None]:
    """
    Profile a block of code.

    Parameters
    ----------
    label : str
        Job name, also used to name the sampling thread.
    sample_interval_ms : int
        Polling interval for the peak sampler. Lower catches shorter spikes at
        the cost of more overhead in the measured process.
    """
    stats = ProfileStats(label=label)
    process = psutil.Process()
    sampler = _PeakSampler(process, label, sample_interval_ms / 1000.0)
    sampler.sample()

    # cpu_percent reports usage since the previous call
    process.cpu_percent(interval=None)
    sampler.start()

    stats.start_ts = time.perf_counter()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts
        sampler.stop()
        sampler.sample()

        stats.peak_rss_bytes = sampler.peak_rss or None
        stats.peak_threads = sampler.peak_threads or None
        stats.samples = sampler.samples
        stats.cpu_percent = process.cpu_percent(interval=None)


__all__ = ["ProfileStats", "profile_block"]
