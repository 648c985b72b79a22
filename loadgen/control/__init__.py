"""
Control primitives shared by the operation drivers.

Rate limiting, connection selection, the statistics window, cooperative stop
signalling and the record-number / phase coordination used by multi-worker
jobs.
"""

from loadgen.control.coordination import PhaseBarrier, RecordNumberAllocator
from loadgen.control.rate_limiter import FixedRateBarrier, RequestPacer, build_rate_limiter
from loadgen.control.selector import ConnectionSelector
from loadgen.control.signals import StopSignal
from loadgen.control.window import StatsWindow, WindowState

__all__ = [
    "ConnectionSelector",
    "FixedRateBarrier",
    "PhaseBarrier",
    "RecordNumberAllocator",
    "RequestPacer",
    "StatsWindow",
    "StopSignal",
    "WindowState",
    "build_rate_limiter",
]
