"""
Warm-up / cool-down gating of statistics collection.

The window is polled once per loop iteration (by every worker sharing it).
Boundaries are therefore honoured with a jitter of roughly one operation,
which is expected.
"""

from __future__ import annotations

import math
import threading
import time
from enum import Enum
from typing import Callable, Optional

from loadgen.control.signals import Clock


class WindowState(str, Enum):
    NOT_STARTED = "not_started"
    COLLECTING = "collecting"
    STOPPED = "stopped"


class StatsWindow:
    """
    Tracks whether statistics should currently be collected.

    Parameters
    ----------
    warm_up_seconds : float
        Collection starts this long after the window is created (immediately
        when zero).
    cool_down_seconds : float
        Collection stops this long before `stop_time`; ignored when zero or
        when the job has no stop time.
    stop_time : float | None
        Clock value at which the job is scheduled to end.
    on_start, on_stop : callable, optional
        Invoked on the NOT_STARTED -> COLLECTING and COLLECTING -> STOPPED
        transitions (typically to start and stop trackers).
    """

    def __init__(
        self,
        warm_up_seconds: float = 0,
        cool_down_seconds: float = 0,
        stop_time: Optional[float] = None,
        clock: Clock = time.monotonic,
        on_start: Optional[Callable[[], None]] = None,
        on_stop: Optional[Callable[[], None]] = None,
    ) -> None:
        self._clock = clock
        self._on_start = on_start
        self._on_stop = on_stop
        self._lock = threading.Lock()
        now = clock()
        self.start_collecting_at = now + warm_up_seconds if warm_up_seconds > 0 else now
        if cool_down_seconds > 0 and stop_time is not None:
            self.stop_collecting_at = stop_time - cool_down_seconds
        else:
            self.stop_collecting_at = math.inf
        self.state = WindowState.NOT_STARTED
        if warm_up_seconds <= 0:
            self._transition(WindowState.COLLECTING)

    @property
    def collecting(self) -> bool:
        return self.state is WindowState.COLLECTING

    def poll(self) -> bool:
        """Advance the state machine against the clock; return `collecting`."""
        if self.state is WindowState.STOPPED:
            return False
        with self._lock:
            now = self._clock()
            if self.state is WindowState.COLLECTING:
                if now >= self.stop_collecting_at:
                    self._transition(WindowState.STOPPED)
            elif self.state is WindowState.NOT_STARTED:
                if now >= self.stop_collecting_at:
                    self.state = WindowState.STOPPED
                elif now >= self.start_collecting_at:
                    self._transition(WindowState.COLLECTING)
            return self.collecting

    def close(self) -> None:
        """End collection at job end if it is still running."""
        with self._lock:
            if self.state is WindowState.COLLECTING:
                self._transition(WindowState.STOPPED)
            else:
                self.state = WindowState.STOPPED

    def _transition(self, state: WindowState) -> None:
        self.state = state
        callback = self._on_start if state is WindowState.COLLECTING else self._on_stop
        if callback is not None:
            callback()


__all__ = ["StatsWindow", "WindowState"]
