"""
Utilities package for the load job runtime.

Exports shared helpers for logging and profiling.
Keep this package lightweight and free of domain-specific logic.
"""

from loadgen.utils.logging import configure_logging, get_logger
from loadgen.utils.profiler import ProfileStats, profile_block

__all__ = [
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
]
