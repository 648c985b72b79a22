"""
Cooperative stop signalling shared by every worker of a job.

A `StopSignal` is set explicitly (cancellation, Ctrl-C) or trips on its own
once an optional deadline passes. Workers poll it at the top of every loop
iteration and use its `wait` methods for every intentional sleep, so no
suspension point outlives a stop request by more than one poll interval.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Callable, Optional

Clock = Callable[[], float]


class StopSignal:
    def __init__(
        self,
        deadline: Optional[float] = None,
        clock: Clock = time.monotonic,
        poll_interval: float = 0.05,
    ) -> None:
        self._event = threading.Event()
        self.cancelled = False
        self._clock = clock
        self.deadline = deadline
        self.poll_interval = poll_interval

    @classmethod
    def after(cls, seconds: Optional[float], clock: Clock = time.monotonic, **kwargs) -> "StopSignal":
        """Signal that trips `seconds` from now (never, if `seconds` is None)."""
        deadline = clock() + seconds if seconds is not None else None
        return cls(deadline=deadline, clock=clock, **kwargs)

    def cap(self, seconds: Optional[float]) -> "StopSignal":
        """Pull the deadline in to `seconds` from now if that is earlier."""
        if seconds is not None:
            deadline = self._clock() + seconds
            if self.deadline is None or deadline < self.deadline:
                self.deadline = deadline
        return self

    def set(self) -> None:
        self.cancelled = True
        self._event.set()

    def should_stop(self) -> bool:
        if self._event.is_set():
            return True
        if self.deadline is not None and self._clock() >= self.deadline:
            self._event.set()
            return True
        return False

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self._clock())

    def wait(self, timeout: float) -> bool:
        """
        Sleep up to `timeout` seconds.

        Returns True if the signal tripped before or during the wait.
        """
        if timeout <= 0:
            return self.should_stop()
        remaining = self.remaining()
        if remaining is not None and remaining < timeout:
            self._event.wait(remaining)
            return self.should_stop()
        if self._event.wait(timeout):
            return True
        return self.should_stop()

    async def wait_async(self, timeout: float) -> bool:
        """Coroutine flavour of `wait`, polling every `poll_interval` seconds."""
        end = self._clock() + timeout
        while not self.should_stop():
            left = end - self._clock()
            if left <= 0:
                return False
            await asyncio.sleep(min(left, self.poll_interval))
        return True


__all__ = ["Clock", "StopSignal"]
