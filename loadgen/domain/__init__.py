"""
Domain package for load jobs.

Exports configuration models, outcome records and the error taxonomy shared
by the templating, control and driver layers.
"""

from loadgen.domain.errors import (
    CaptureFormatError,
    ConfigurationError,
    GenerationError,
    LoadJobError,
    OperationError,
    TemplateError,
)
from loadgen.domain.models import (
    AddDeleteOptions,
    AsyncRateOptions,
    JobConfig,
    OperationKind,
    OperationOutcome,
    RateOptions,
    ReplayOptions,
    SelectionMode,
    TargetKind,
)

__all__ = [
    "AddDeleteOptions",
    "AsyncRateOptions",
    "CaptureFormatError",
    "ConfigurationError",
    "GenerationError",
    "JobConfig",
    "LoadJobError",
    "OperationError",
    "OperationKind",
    "OperationOutcome",
    "RateOptions",
    "ReplayOptions",
    "SelectionMode",
    "TargetKind",
    "TemplateError",
]
