"""
Capture replay job.

Each worker opens its own TCP connection to the target and sends the payloads
of a capture file in order, waiting between payloads either for the (scaled)
capture-time delta or for a fixed delay. Responses are read and discarded by a
background thread per connection so the target never blocks on a full send
buffer. A failed send closes the connection; it is reopened before the next
payload and the disconnect is counted.
"""

from __future__ import annotations

import contextlib
import itertools
import socket
import threading
import time
from typing import Callable, List, Optional

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from loadgen.capture import CaptureRecord, compute_delays, read_capture
from loadgen.config import Settings, get_settings
from loadgen.control.rate_limiter import FixedRateBarrier, build_rate_limiter
from loadgen.control.signals import Clock, StopSignal
from loadgen.domain.models import JobConfig, ReplayOptions
from loadgen.drivers.abstract import AbstractLoadJob, JobResult
from loadgen.drivers.base import run_workers
from loadgen.stats.trackers import IncrementalTracker
from loadgen.utils.logging import get_logger

log = get_logger(__name__)

ConnectFactory = Callable[[str, int], socket.socket]


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    retry=retry_if_exception_type(OSError),
    reraise=True,
)
def open_connection(host: str, port: int) -> socket.socket:
    """Connect to the replay target, retrying transient failures."""
    sock = socket.create_connection((host, port), timeout=10)
    sock.settimeout(None)
    return sock


class ResponseDrainer(threading.Thread):
    """
    Reads and discards whatever the target sends back on one connection.

    The read blocks; the thread ends when the peer closes or the connection
    is shut down locally.
    """

    def __init__(self, sock: socket.socket, stop: StopSignal, name: str) -> None:
        super().__init__(name=name, daemon=True)
        self.sock = sock
        self.stop = stop
        self.bytes_received = 0

    def run(self) -> None:
        while not self.stop.should_stop():
            try:
                data = self.sock.recv(65536)
            except OSError:
                return
            if not data:
                return
            self.bytes_received += len(data)


class ReplayJob(AbstractLoadJob):
    name: str = "replay"
    description: str = "Replay a capture file against a TCP endpoint with preserved or fixed timing."

    def __init__(
        self,
        config: JobConfig,
        options: ReplayOptions,
        connect: ConnectFactory = open_connection,
        settings: Optional[Settings] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.config = config
        self.options = options
        self.connect = connect
        self.settings = settings or get_settings()
        self.clock = clock
        self.records: List[CaptureRecord] = read_capture(options.capture_file)
        self.delays = compute_delays(
            self.records,
            options.preserve_timing,
            options.timing_multiplier,
            options.packet_delay_ms,
        )
        self.packets_replayed = IncrementalTracker("packets replayed", clock)
        self.iterations_completed = IncrementalTracker("iterations completed", clock)
        self.disconnects_caught = IncrementalTracker("disconnects caught", clock)

    def _trackers(self):
        return (self.packets_replayed, self.iterations_completed, self.disconnects_caught)

    def execute(self, stop: Optional[StopSignal] = None) -> JobResult:
        stop = stop or StopSignal(clock=self.clock, poll_interval=self.settings.stop_poll_seconds)
        stop.cap(self.config.duration_seconds)
        limiter = build_rate_limiter(self.config, stop, self.clock)
        log.info(
            f"[JOB START] {self.name}",
            extra={
                "job": self.name,
                "packets": len(self.records),
                "target": f"{self.options.host}:{self.options.port}",
                "threads": self.config.threads,
                "max_iterations": self.options.max_iterations,
            },
        )
        for tracker in self._trackers():
            tracker.start()
        started = self.clock()
        try:
            errors = run_workers(
                self.name, self.config.threads, lambda index: self._replay(index, stop, limiter), stop
            )
        finally:
            for tracker in self._trackers():
                tracker.stop()
        duration = self.clock() - started

        packets = self.packets_replayed.count
        result = JobResult(
            job=self.name,
            operations=packets,
            duration_seconds=duration,
            throughput_ops_per_sec=packets / duration if duration > 0 else 0.0,
            stopped_early=stop.cancelled,
            stats={},
            extra={
                "packets_replayed": packets,
                "iterations_completed": self.iterations_completed.count,
                "disconnects_caught": self.disconnects_caught.count,
            },
        )
        if errors:
            result["error"] = "; ".join(f"{type(exc).__name__}: {exc}" for exc in errors)
        log.info(f"[JOB COMPLETE] {self.name}", extra={"job": self.name, **result["extra"]})
        return result

    def _replay(self, index: int, stop: StopSignal, limiter: Optional[FixedRateBarrier]) -> None:
        opts = self.options
        iterations = itertools.count() if opts.max_iterations <= 0 else range(opts.max_iterations)
        sock: Optional[socket.socket] = None
        drainer: Optional[ResponseDrainer] = None
        try:
            for iteration in iterations:
                if stop.should_stop():
                    break
                if iteration > 0 and opts.iteration_delay_ms > 0:
                    if stop.wait(opts.iteration_delay_ms / 1000.0):
                        break
                for record, delay in zip(self.records, self.delays):
                    if stop.should_stop():
                        return
                    if sock is None:
                        try:
                            sock = self.connect(opts.host, opts.port)
                        except OSError as exc:
                            log.error(
                                f"Unable to connect to {opts.host}:{opts.port}",
                                extra={"worker": index, "error": str(exc)},
                            )
                            return
                        drainer = ResponseDrainer(sock, stop, f"{self.name}-{index}-reader")
                        drainer.start()
                    if delay > 0 and stop.wait(delay):
                        return
                    if limiter is not None and limiter.await_permit():
                        return
                    try:
                        sock.sendall(record.payload)
                        self.packets_replayed.increment()
                    except OSError:
                        _close_quietly(sock)
                        sock = None
                        drainer.join(timeout=1.0)
                        drainer = None
                        self.disconnects_caught.increment()
                if not stop.should_stop():
                    self.iterations_completed.increment()
        finally:
            if sock is not None:
                _close_quietly(sock)
            if drainer is not None:
                drainer.join(timeout=1.0)


def _close_quietly(sock: socket.socket) -> None:
    # Wakes the drainer blocked in recv; fails harmlessly if the peer already left.
    with contextlib.suppress(OSError):
        sock.shutdown(socket.SHUT_RDWR)
    try:
        sock.close()
    except OSError as exc:
        log.debug("Error closing replay connection", extra={"error": str(exc)})


__all__ = ["ReplayJob", "ResponseDrainer", "open_connection"]
