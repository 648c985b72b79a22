"""
Rate control primitives.

`FixedRateBarrier` hands out at most ``permits_per_interval`` permits in each
fixed window of ``interval_ms`` and is shared by every worker that must honour
one job-wide ceiling. `RequestPacer` enforces a minimum spacing between the
start of consecutive requests on a single worker.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from loadgen.control.signals import Clock, StopSignal
from loadgen.domain.errors import ConfigurationError
from loadgen.domain.models import JobConfig
from loadgen.utils.logging import get_logger

log = get_logger(__name__)


class FixedRateBarrier:
    """
    Fixed-interval permit barrier.

    Windows are aligned to the time the barrier was created; once a window
    elapses the grant counter resets. Waiting is interruptible: `shutdown()`
    (or the shared stop signal tripping) wakes every blocked caller.
    """

    def __init__(
        self,
        interval_ms: int,
        permits_per_interval: int,
        stop: Optional[StopSignal] = None,
        clock: Clock = time.monotonic,
        sleep: Optional[Callable[[float], bool]] = None,
    ) -> None:
        if interval_ms <= 0:
            raise ConfigurationError(f"Rate interval must be positive (got {interval_ms}ms)")
        if permits_per_interval <= 0:
            raise ConfigurationError(
                f"Permits per interval must be positive (got {permits_per_interval})"
            )
        self.interval_ms = interval_ms
        self.permits_per_interval = permits_per_interval
        self._interval = interval_ms / 1000.0
        self._clock = clock
        self._stop = stop or StopSignal(clock=clock)
        self._sleep = sleep or self._stop.wait
        self._lock = threading.Lock()
        self._window_start = clock()
        self._granted = 0

    @property
    def window_start(self) -> float:
        return self._window_start

    def shutdown(self) -> None:
        self._stop.set()

    def _reserve(self) -> float:
        """Grant a permit (returns 0) or return seconds until the next window."""
        with self._lock:
            now = self._clock()
            elapsed = now - self._window_start
            if elapsed >= self._interval:
                self._window_start += (elapsed // self._interval) * self._interval
                self._granted = 0
            if self._granted < self.permits_per_interval:
                self._granted += 1
                return 0.0
            return max(self._window_start + self._interval - now, 0.0) or 1e-6

    def await_permit(self) -> bool:
        """
        Block until a permit is granted.

        Returns True when woken by shutdown instead; the caller must then skip
        the gated operation and re-check its own stop condition.
        """
        while True:
            if self._stop.should_stop():
                return True
            delay = self._reserve()
            if delay == 0.0:
                return False
            if self._sleep(delay):
                return True

    async def await_permit_async(self) -> bool:
        while True:
            if self._stop.should_stop():
                return True
            delay = self._reserve()
            if delay == 0.0:
                return False
            if await self._stop.wait_async(delay):
                return True


class RequestPacer:
    """Sleeps out the remainder of a minimum per-request interval."""

    def __init__(self, min_interval_ms: int, stop: StopSignal, clock: Clock = time.monotonic) -> None:
        self.min_interval = max(min_interval_ms, 0) / 1000.0
        self._stop = stop
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self.min_interval > 0

    def pace(self, started: float) -> bool:
        """Sleep until `min_interval` after `started`; True if stopped meanwhile."""
        if not self.enabled:
            return False
        remaining = self.min_interval - (self._clock() - started)
        if remaining <= 0:
            return False
        return self._stop.wait(remaining)

    async def pace_async(self, started: float) -> bool:
        if not self.enabled:
            return False
        remaining = self.min_interval - (self._clock() - started)
        if remaining <= 0:
            return False
        return await self._stop.wait_async(remaining)


def build_rate_limiter(
    config: JobConfig, stop: StopSignal, clock: Clock = time.monotonic
) -> Optional[FixedRateBarrier]:
    """
    Create the job-wide barrier described by `config`, or None when unlimited.

    ``max_rate`` is per second; the barrier works in windows of
    ``effective_rate_interval_seconds`` carrying ``max_rate * interval`` permits.
    """
    if not config.rate_limited:
        return None
    interval_seconds = config.effective_rate_interval_seconds
    barrier = FixedRateBarrier(
        interval_ms=interval_seconds * 1000,
        permits_per_interval=config.permits_per_interval,
        stop=stop,
        clock=clock,
    )
    log.debug(
        "Rate limiter configured",
        extra={
            "max_rate": config.max_rate,
            "interval_seconds": interval_seconds,
            "permits_per_interval": config.permits_per_interval,
        },
    )
    return barrier


__all__ = ["FixedRateBarrier", "RequestPacer", "build_rate_limiter"]
