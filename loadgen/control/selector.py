"""
Channel selection for drivers that spread work over several connections.

A selector is owned by a single dispatching loop and is not thread-safe. The
in-flight counts it reads for the fewest-outstanding policy may be slightly
stale; the choice is a load-balancing heuristic only.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from loadgen.domain.models import SelectionMode


class HasOutstanding(Protocol):
    outstanding: int


class ConnectionSelector:
    def __init__(self, channels: Sequence[HasOutstanding], mode: SelectionMode) -> None:
        if not channels:
            raise ValueError("ConnectionSelector needs at least one channel")
        self._channels = channels
        self.mode = SelectionMode(mode)
        self._next = 0

    def select(self) -> int:
        if self.mode is SelectionMode.ROUND_ROBIN:
            return self._round_robin()
        return self._fewest_outstanding()

    def _round_robin(self) -> int:
        index = self._next
        self._next = (index + 1) % len(self._channels)
        return index

    def _fewest_outstanding(self) -> int:
        best_index = 0
        best_count = None
        for index, channel in enumerate(self._channels):
            count = channel.outstanding
            if count == 0:
                return index
            if best_count is None or count < best_count:
                best_index, best_count = index, count
        return best_index


__all__ = ["ConnectionSelector", "HasOutstanding"]
