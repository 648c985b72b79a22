from loadgen.stats.operation_stats import JobStatistics, OperationStats
from loadgen.stats.trackers import (
    CategoricalTracker,
    IncrementalTracker,
    ResponseTimeCategorizer,
    TimeTracker,
    categorize_response_time,
)

__all__ = [
    "CategoricalTracker",
    "IncrementalTracker",
    "JobStatistics",
    "OperationStats",
    "ResponseTimeCategorizer",
    "TimeTracker",
    "categorize_response_time",
]
