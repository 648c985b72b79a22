"""
Abstract job interfaces and result contracts for the load job runtime.

Concrete jobs (add/delete, modify or search rate, async rate, capture replay)
implement the LoadJob protocol and return a JobResult TypedDict so that the
orchestrator and reporter can treat every variant the same way.
"""

from __future__ import annotations

import abc
from typing import Any, Dict, Optional, Protocol, TypedDict, runtime_checkable

from loadgen.control.signals import StopSignal


class JobResult(TypedDict, total=False):
    """
    Metrics contract returned by jobs.

    Fields are optional to keep implementations lightweight; orchestrator and
    reporter tolerate missing values and enrich when possible.
    """

    job: str
    operations: int
    duration_seconds: float
    throughput_ops_per_sec: float
    stopped_early: bool
    peak_rss_bytes: Optional[int]
    cpu_percent: Optional[float]
    error: Optional[str]
    notes: Optional[str]
    stats: Dict[str, Dict[str, Any]]
    extra: Dict[str, Any]


@runtime_checkable
class LoadJob(Protocol):
    """
    Common interface all load jobs implement.

    Attributes
    ----------
    name : str
        A short machine-friendly identifier.
    description : str
        A human-friendly summary of the load pattern.
    """

    name: str
    description: str

    def execute(self, stop: Optional[StopSignal] = None) -> JobResult:
        """
        Run the job until its duration elapses, its work runs out or `stop`
        is set, and return metrics.
        """
        ...


class AbstractLoadJob(abc.ABC):
    """
    Optional ABC helper for class-based implementations.

    Subclasses set `name` and `description` and implement `execute`.
    """

    name: str
    description: str

    @abc.abstractmethod
    def execute(self, stop: Optional[StopSignal] = None) -> JobResult:  # pragma: no cover
        """Run the job and return metrics."""
        raise NotImplementedError


__all__ = ["AbstractLoadJob", "JobResult", "LoadJob"]
