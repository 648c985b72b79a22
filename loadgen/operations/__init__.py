"""
Operation channels: the boundary between drivers and the target service.
"""

from loadgen.operations.abstract import (
    AddRequest,
    AsyncOperationChannel,
    DeleteRequest,
    ModifyRequest,
    OperationChannel,
    OperationRequest,
    OperationResult,
    ResultCode,
    SearchRequest,
)
from loadgen.operations.memory import AsyncMemoryChannel, InMemoryDirectory, MemoryChannel

__all__ = [
    "AddRequest",
    "AsyncMemoryChannel",
    "AsyncOperationChannel",
    "DeleteRequest",
    "InMemoryDirectory",
    "MemoryChannel",
    "ModifyRequest",
    "OperationChannel",
    "OperationRequest",
    "OperationResult",
    "ResultCode",
    "SearchRequest",
]
