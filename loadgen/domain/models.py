"""
Domain models for load jobs.

`JobConfig` is the immutable configuration built once per run and handed to
every worker when it is spawned. Variant-specific knobs live in the small
option models next to it. `OperationOutcome` is the per-operation record the
drivers hand to the statistics layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from loadgen.domain.durations import parse_duration


class SelectionMode(str, Enum):
    """How the async driver picks a channel for the next operation."""

    ROUND_ROBIN = "round_robin"
    FEWEST_OUTSTANDING = "fewest_outstanding"


class TargetKind(str, Enum):
    """Backend the operation channels talk to."""

    MEMORY = "memory"
    POSTGRES = "postgres"


class OperationKind(str, Enum):
    ADD = "add"
    DELETE = "delete"
    MODIFY = "modify"
    SEARCH = "search"


class JobConfig(BaseModel):
    """
    Settings shared by every job variant.

    Durations may be given as integers (seconds) or duration strings such as
    ``"5m"``. A `duration_seconds` of None runs until the job is stopped or,
    for jobs that walk the record range, until the range is exhausted.
    """

    threads: int = Field(1, ge=1, description="Worker threads (or async loops).")
    duration_seconds: Optional[int] = Field(None, description="Maximum run time.")
    first_record_number: int = Field(0, description="First record number in the range.")
    last_record_number: int = Field(0, description="Last record number (inclusive).")
    max_rate: int = Field(0, description="Operations per second; <= 0 disables limiting.")
    rate_interval_seconds: int = Field(
        0, ge=0, description="Rate-limit interval; 0 uses the collection interval."
    )
    collection_interval_seconds: int = Field(10, ge=1)
    time_between_requests_ms: int = Field(0, ge=0)
    warm_up_seconds: int = Field(0, ge=0)
    cool_down_seconds: int = Field(0, ge=0)
    response_time_threshold_ms: int = Field(
        -1, description="Operations slower than this are counted; <= 0 disables."
    )
    template_lines: Tuple[str, ...] = Field(default_factory=tuple)
    key_attribute: str = Field("uid", min_length=1)
    key_suffix: str = Field("", description="Appended to the record key after a comma.")
    target: TargetKind = TargetKind.MEMORY
    seed: Optional[int] = None

    model_config = {
        "frozen": True,
        "populate_by_name": True,
    }

    @field_validator("duration_seconds", "warm_up_seconds", "cool_down_seconds", mode="before")
    @classmethod
    def _parse_durations(cls, value: Union[str, int, None]) -> Optional[int]:
        if value is None:
            return None
        return parse_duration(value)

    @field_validator("template_lines", mode="before")
    @classmethod
    def _drop_blank_lines(cls, value):
        if isinstance(value, str):
            value = value.splitlines()
        return tuple(line for line in value if line.strip())

    @model_validator(mode="after")
    def _check_combinations(self) -> "JobConfig":
        if self.last_record_number < self.first_record_number:
            raise ValueError(
                f"last_record_number ({self.last_record_number}) must not be lower than "
                f"first_record_number ({self.first_record_number})"
            )
        if self.rate_interval_seconds > 0 and self.max_rate <= 0:
            raise ValueError("rate_interval_seconds requires a positive max_rate")
        if self.duration_seconds is not None:
            if self.duration_seconds <= 0:
                raise ValueError("duration_seconds must be positive when given")
            window = self.warm_up_seconds + self.cool_down_seconds
            if window and window >= self.duration_seconds:
                raise ValueError(
                    "warm-up plus cool-down must be shorter than the job duration "
                    f"({window}s >= {self.duration_seconds}s)"
                )
        return self

    @property
    def rate_limited(self) -> bool:
        return self.max_rate > 0

    @property
    def effective_rate_interval_seconds(self) -> int:
        return self.rate_interval_seconds or self.collection_interval_seconds

    @property
    def permits_per_interval(self) -> int:
        return self.max_rate * self.effective_rate_interval_seconds

    @property
    def record_count(self) -> int:
        return self.last_record_number - self.first_record_number + 1

    def record_key(self, record_number: int) -> str:
        """Key (distinguished name) of the record with the given number."""
        key = f"{self.key_attribute}={record_number}"
        if self.key_suffix:
            key = f"{key},{self.key_suffix}"
        return key


class AddDeleteOptions(BaseModel):
    """Two-phase add-then-delete job knobs."""

    perform_adds: bool = True
    perform_deletes: bool = True
    alternate: bool = Field(
        False, description="Delete each record right after adding it instead of in a second phase."
    )
    time_between_phases_ms: int = Field(0, ge=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_something_to_do(self) -> "AddDeleteOptions":
        if not (self.perform_adds or self.perform_deletes):
            raise ValueError("at least one of perform_adds or perform_deletes must be set")
        if self.alternate and not (self.perform_adds and self.perform_deletes):
            raise ValueError("alternate mode requires both adds and deletes")
        return self


class RateOptions(BaseModel):
    """Options for the rate-driven search/modify jobs."""

    operation: OperationKind = OperationKind.MODIFY
    categorize_response_times: bool = True

    model_config = {"frozen": True}

    @field_validator("operation")
    @classmethod
    def _search_or_modify(cls, value: OperationKind) -> OperationKind:
        if value not in (OperationKind.MODIFY, OperationKind.SEARCH):
            raise ValueError("rate jobs issue either 'search' or 'modify' operations")
        return value


class AsyncRateOptions(RateOptions):
    connections: int = Field(1, ge=1)
    selection_mode: SelectionMode = SelectionMode.FEWEST_OUTSTANDING
    max_outstanding: int = Field(0, ge=0, description="In-flight bound; 0 is unbounded.")


class ReplayOptions(BaseModel):
    """Capture-file replay settings."""

    capture_file: Path
    host: str = "localhost"
    port: int = Field(389, ge=1, le=65535)
    preserve_timing: bool = True
    timing_multiplier: float = Field(1.0, gt=0)
    packet_delay_ms: int = Field(0, ge=0)
    max_iterations: int = Field(1, description="<= 0 replays until stopped.")
    iteration_delay_ms: int = Field(0, ge=0)

    model_config = {"frozen": True}


@dataclass(frozen=True)
class OperationOutcome:
    """Result of a single operation as seen by the statistics layer."""

    result_code: str
    duration_ms: float
    exceeded_threshold: bool = False

    @classmethod
    def classify(
        cls, result_code: str, duration_ms: float, threshold_ms: int
    ) -> "OperationOutcome":
        exceeded = threshold_ms > 0 and duration_ms > threshold_ms
        return cls(result_code=result_code, duration_ms=duration_ms, exceeded_threshold=exceeded)


__all__ = [
    "AddDeleteOptions",
    "AsyncRateOptions",
    "JobConfig",
    "OperationKind",
    "OperationOutcome",
    "RateOptions",
    "ReplayOptions",
    "SelectionMode",
    "TargetKind",
]
