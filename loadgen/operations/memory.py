"""
In-process record store and channels.

Used for dry runs and tests: operations follow directory semantics (adding an
existing key fails with ``entry_already_exists``, touching a missing key fails
with ``no_such_object``) without any network in between.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional

from loadgen.domain.errors import OperationError
from loadgen.operations.abstract import (
    AddRequest,
    DeleteRequest,
    ModifyRequest,
    OperationRequest,
    OperationResult,
    ResultCode,
    SearchRequest,
)
from loadgen.templating.record import Record


class InMemoryDirectory:
    def __init__(self) -> None:
        self._records: Dict[str, Record] = {}
        self._lock = threading.Lock()

    def preload(self, records: Iterable[Record]) -> int:
        count = 0
        with self._lock:
            for record in records:
                if record.key is None:
                    raise ValueError("Records must carry a key to be preloaded")
                self._records[record.key] = record
                count += 1
        return count

    def get(self, key: str) -> Optional[Record]:
        with self._lock:
            return self._records.get(key)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def apply(self, request: OperationRequest) -> Optional[Record]:
        """Apply a request; returns the matched record for searches."""
        with self._lock:
            if isinstance(request, AddRequest):
                if request.key in self._records:
                    raise OperationError(ResultCode.ENTRY_ALREADY_EXISTS, request.key)
                self._records[request.key] = request.record
                return None
            current = self._records.get(request.key)
            if current is None:
                raise OperationError(ResultCode.NO_SUCH_OBJECT, request.key)
            if isinstance(request, DeleteRequest):
                del self._records[request.key]
                return None
            if isinstance(request, ModifyRequest):
                self._records[request.key] = _replace(current, request.changes)
                return None
            if isinstance(request, SearchRequest):
                return current
        raise TypeError(f"Unsupported request type: {type(request).__name__}")


def _replace(current: Record, changes: Record) -> Record:
    updated = Record(current.key)
    for name, value in current.items():
        if name not in changes:
            updated.add(name, value)
    for name, value in changes.items():
        updated.add(name, value)
    return updated


class MemoryChannel:
    """Blocking channel over an `InMemoryDirectory` with optional latency."""

    def __init__(
        self,
        directory: InMemoryDirectory,
        name: str = "memory",
        latency_ms: float = 0.0,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.directory = directory
        self.name = name
        self.latency_ms = latency_ms
        self._clock = clock
        self._sleep = sleep

    def execute(self, request: OperationRequest) -> OperationResult:
        start = self._clock()
        if self.latency_ms > 0:
            self._sleep(self.latency_ms / 1000.0)
        try:
            found = self.directory.apply(request)
        except OperationError as exc:
            exc.duration_ms = (self._clock() - start) * 1000.0
            raise
        return OperationResult(ResultCode.SUCCESS, (self._clock() - start) * 1000.0, found)

    def close(self) -> None:
        return None


class AsyncMemoryChannel:
    def __init__(
        self, directory: InMemoryDirectory, name: str = "memory", latency_ms: float = 0.0
    ) -> None:
        self.directory = directory
        self.name = name
        self.latency_ms = latency_ms

    async def execute_async(self, request: OperationRequest) -> OperationResult:
        start = time.perf_counter()
        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms / 1000.0)
        try:
            found = self.directory.apply(request)
        except OperationError as exc:
            exc.duration_ms = (time.perf_counter() - start) * 1000.0
            raise
        return OperationResult(ResultCode.SUCCESS, (time.perf_counter() - start) * 1000.0, found)

    async def close(self) -> None:
        return None


__all__ = ["AsyncMemoryChannel", "InMemoryDirectory", "MemoryChannel"]
