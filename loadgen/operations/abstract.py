"""
Operation requests, results and channel interfaces.

Drivers talk to the target service only through these protocols. A channel
either returns an `OperationResult` or raises `OperationError` carrying a
result code; drivers classify anything else as a client-side failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Union, runtime_checkable

from loadgen.templating.record import Record


class ResultCode:
    """Result-code labels used across channels and statistics."""

    SUCCESS = "success"
    NO_SUCH_OBJECT = "no_such_object"
    ENTRY_ALREADY_EXISTS = "entry_already_exists"
    SERVER_DOWN = "server_down"
    OPERATIONS_ERROR = "operations_error"
    TIMEOUT = "timeout"
    CLIENT_SIDE_FAILURE = "client_side_failure"


@dataclass(frozen=True)
class AddRequest:
    key: str
    record: Record


@dataclass(frozen=True)
class DeleteRequest:
    key: str


@dataclass(frozen=True)
class ModifyRequest:
    """Replace every attribute named in `changes` with the values given there."""

    key: str
    changes: Record


@dataclass(frozen=True)
class SearchRequest:
    key: str


OperationRequest = Union[AddRequest, DeleteRequest, ModifyRequest, SearchRequest]


@dataclass(frozen=True)
class OperationResult:
    result_code: str
    duration_ms: float
    record: Optional[Record] = None

    @property
    def succeeded(self) -> bool:
        return self.result_code == ResultCode.SUCCESS


@runtime_checkable
class OperationChannel(Protocol):
    """
    Blocking channel to the target service.

    Attributes
    ----------
    name : str
        Identifier used for per-channel statistics and logs.
    """

    name: str

    def execute(self, request: OperationRequest) -> OperationResult:
        """
        Perform one operation.

        Raises
        ------
        OperationError
            When the service reports a failure (carries the result code).
        """
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class AsyncOperationChannel(Protocol):
    name: str

    async def execute_async(self, request: OperationRequest) -> OperationResult:
        ...

    async def close(self) -> None:
        ...


__all__ = [
    "AddRequest",
    "AsyncOperationChannel",
    "DeleteRequest",
    "ModifyRequest",
    "OperationChannel",
    "OperationRequest",
    "OperationResult",
    "ResultCode",
    "SearchRequest",
]
