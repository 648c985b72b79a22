"""Shared state for worker threads of a multi-phase job."""

from __future__ import annotations

import threading
from typing import Callable, Optional

from loadgen.control.signals import StopSignal


class RecordNumberAllocator:
    """
    Hands out record numbers in ``[first, last]`` exactly once each.

    ``next()`` is an atomic fetch-and-increment; it returns None once the
    range is exhausted. ``reset()`` rewinds to the first number so that a
    following phase walks the same range again.
    """

    def __init__(self, first: int, last: int) -> None:
        if last < first:
            raise ValueError("last record number must be >= first record number")
        self.first = first
        self.last = last
        self._next = first
        self._lock = threading.Lock()

    def next(self) -> Optional[int]:
        with self._lock:
            if self._next > self.last:
                return None
            value = self._next
            self._next += 1
            return value

    def reset(self) -> None:
        with self._lock:
            self._next = self.first

    @property
    def exhausted(self) -> bool:
        with self._lock:
            return self._next > self.last


class PhaseBarrier:
    """
    Rendezvous between the phases of a job.

    Every worker calls :meth:`arrive_and_wait` once when it finishes a phase,
    including when it exits early. The last worker to arrive runs the
    transition (for example a settle delay followed by an allocator reset)
    exactly once and then releases the others.
    """

    def __init__(self, parties: int) -> None:
        if parties < 1:
            raise ValueError("parties must be >= 1")
        self.parties = parties
        self._remaining = parties
        self._released = False
        self._condition = threading.Condition()

    @property
    def remaining(self) -> int:
        with self._condition:
            return self._remaining

    def arrive_and_wait(
        self,
        transition: Optional[Callable[[], None]] = None,
        stop: Optional[StopSignal] = None,
        poll_interval: float = 0.05,
    ) -> bool:
        """
        Arrive at the barrier and block until all parties have arrived.

        Returns True when the caller ran the transition. Waiting ends early
        when ``stop`` is set; the caller then observes the stop itself.
        """
        with self._condition:
            self._remaining -= 1
            is_last = self._remaining == 0
        if is_last:
            try:
                if transition is not None:
                    transition()
            finally:
                with self._condition:
                    self._released = True
                    self._condition.notify_all()
            return True
        with self._condition:
            while not self._released:
                if stop is not None and stop.should_stop():
                    break
                self._condition.wait(poll_interval)
        return False


__all__ = ["PhaseBarrier", "RecordNumberAllocator"]
