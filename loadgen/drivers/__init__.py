"""
Load job drivers.

Re-exports the job interfaces and the concrete job classes so downstream code
can import from `loadgen.drivers` directly.
"""

from loadgen.drivers.abstract import AbstractLoadJob, JobResult, LoadJob
from loadgen.drivers.add_delete import AddDeleteJob
from loadgen.drivers.async_rate import AsyncRateJob
from loadgen.drivers.rate import RateJob
from loadgen.drivers.replay import ReplayJob

__all__ = [
    # Abstracts
    "AbstractLoadJob",
    "JobResult",
    "LoadJob",
    # Concrete jobs
    "AddDeleteJob",
    "AsyncRateJob",
    "RateJob",
    "ReplayJob",
]
