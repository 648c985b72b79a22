"""
Error taxonomy for load jobs.

Configuration errors are raised while a job is being built and are fatal to
startup. Generation and operation errors happen mid-run; drivers classify them
into result codes and keep going.
"""

from __future__ import annotations

from typing import Optional


class LoadJobError(Exception):
    """Base class for all errors raised by the load job runtime."""


class ConfigurationError(LoadJobError, ValueError):
    """Invalid job configuration detected before any operation is issued."""


class TemplateError(ConfigurationError):
    """
    A template line could not be compiled.

    Attributes
    ----------
    line_number : int
        One-based index of the offending template line.
    column : int | None
        Zero-based column of the problem within the line, when known.
    line : str
        The raw template line.
    """

    def __init__(
        self,
        message: str,
        line_number: int,
        line: str,
        column: Optional[int] = None,
    ) -> None:
        location = f"line {line_number}"
        if column is not None:
            location += f", column {column}"
        super().__init__(f"{message} ({location}: {line!r})")
        self.reason = message
        self.line_number = line_number
        self.column = column
        self.line = line


class CaptureFormatError(ConfigurationError):
    """A capture file is truncated or violates the record format."""


class GenerationError(LoadJobError):
    """A record could not be generated from its template."""


class OperationError(LoadJobError):
    """
    An operation against the target service failed with a known result code.

    Channels raise this instead of leaking driver-specific exceptions so the
    driver can always bucket the outcome.
    """

    def __init__(
        self, result_code: str, message: str = "", duration_ms: Optional[float] = None
    ) -> None:
        super().__init__(message or result_code)
        self.result_code = result_code
        self.duration_ms = duration_ms


__all__ = [
    "CaptureFormatError",
    "ConfigurationError",
    "GenerationError",
    "LoadJobError",
    "OperationError",
    "TemplateError",
]
