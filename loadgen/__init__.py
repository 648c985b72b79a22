"""
loadgen - rate-controlled load generation jobs.

This package drives configurable streams of operations against a record
store and measures latency, throughput and result-code distribution:

- Templated synthetic-record generation
- Fixed-interval rate limiting and inter-request pacing
- Warm-up / cool-down windows for statistics collection
- Synchronous (thread-per-worker) and asynchronous (bounded in-flight) drivers
- Capture-file replay against TCP endpoints
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from loadgen.config import Settings, get_settings
from loadgen.control.signals import StopSignal
from loadgen.domain.models import JobConfig
from loadgen.drivers.abstract import AbstractLoadJob, JobResult, LoadJob
from loadgen.orchestrator import available_jobs, render_records, run_job
from loadgen.templating import Record, compile_template, expand
from loadgen.utils.logging import configure_logging, get_logger
from loadgen.utils.profiler import ProfileStats, profile_block

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "JobConfig",
    "Settings",
    "get_settings",
    # Orchestration
    "StopSignal",
    "available_jobs",
    "render_records",
    "run_job",
    # Job abstractions
    "AbstractLoadJob",
    "JobResult",
    "LoadJob",
    # Templating
    "Record",
    "compile_template",
    "expand",
    # Logging
    "configure_logging",
    "get_logger",
    # Profiling
    "ProfileStats",
    "profile_block",
]
