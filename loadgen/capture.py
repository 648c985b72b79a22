"""
Capture-file codec for replay jobs.

A capture file is a sequence of records, each laid out big-endian as::

    [4-byte version][8-byte capture timestamp (ms)][4-byte length][payload]

The version must be 1 and a payload may not exceed 1 MiB. A file that ends
mid-record is rejected rather than silently truncated.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, List, Sequence, Union

from loadgen.domain.errors import CaptureFormatError

CAPTURE_VERSION = 1
MAX_PAYLOAD_BYTES = 1_048_576
HEADER = struct.Struct(">iqi")


@dataclass(frozen=True)
class CaptureRecord:
    timestamp_ms: int
    payload: bytes


def encode_record(record: CaptureRecord) -> bytes:
    if len(record.payload) > MAX_PAYLOAD_BYTES:
        raise CaptureFormatError(
            f"Payload of {len(record.payload)} bytes exceeds the {MAX_PAYLOAD_BYTES} byte limit"
        )
    return HEADER.pack(CAPTURE_VERSION, record.timestamp_ms, len(record.payload)) + record.payload


def iter_records(stream: BinaryIO) -> Iterator[CaptureRecord]:
    """Decode records from a binary stream until a clean end of file."""
    index = 0
    while True:
        header = stream.read(HEADER.size)
        if not header:
            return
        if len(header) < HEADER.size:
            raise CaptureFormatError(f"Truncated header in capture record {index}")
        version, timestamp_ms, length = HEADER.unpack(header)
        if version != CAPTURE_VERSION:
            raise CaptureFormatError(
                f"Unsupported capture record version {version} in record {index}"
            )
        if length < 0 or length > MAX_PAYLOAD_BYTES:
            raise CaptureFormatError(f"Invalid payload length {length} in capture record {index}")
        payload = stream.read(length)
        if len(payload) < length:
            raise CaptureFormatError(
                f"Truncated payload in capture record {index} "
                f"(expected {length} bytes, got {len(payload)})"
            )
        yield CaptureRecord(timestamp_ms, payload)
        index += 1


def read_capture(path: Union[str, Path]) -> List[CaptureRecord]:
    path = Path(path)
    try:
        with path.open("rb") as stream:
            records = list(iter_records(stream))
    except OSError as exc:
        raise CaptureFormatError(f"Unable to read capture file {path}: {exc}") from exc
    if not records:
        raise CaptureFormatError(f"Capture file {path} contains no records")
    return records


def write_capture(path: Union[str, Path], records: Iterable[CaptureRecord]) -> int:
    count = 0
    with Path(path).open("wb") as stream:
        for record in records:
            stream.write(encode_record(record))
            count += 1
    return count


def compute_delays(
    records: Sequence[CaptureRecord],
    preserve_timing: bool = True,
    timing_multiplier: float = 1.0,
    packet_delay_ms: int = 0,
) -> List[float]:
    """
    Delay in seconds to wait before sending each record.

    The first record is sent immediately. With `preserve_timing` each later
    record waits for the capture-time delta to its predecessor scaled by
    `timing_multiplier`; otherwise every later record waits `packet_delay_ms`.
    Negative deltas (clock steps in the capture) are clamped to zero.
    """
    delays: List[float] = []
    for index, record in enumerate(records):
        if index == 0:
            delays.append(0.0)
        elif preserve_timing:
            delta_ms = record.timestamp_ms - records[index - 1].timestamp_ms
            delays.append(max(delta_ms * timing_multiplier, 0.0) / 1000.0)
        else:
            delays.append(packet_delay_ms / 1000.0)
    return delays


__all__ = [
    "CAPTURE_VERSION",
    "MAX_PAYLOAD_BYTES",
    "CaptureRecord",
    "compute_delays",
    "encode_record",
    "iter_records",
    "read_capture",
    "write_capture",
]
