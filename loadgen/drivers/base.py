"""
Shared machinery for thread-per-worker jobs.

`SyncOperationLoop` holds the pieces of one worker's iteration: the rate gate,
the dispatch and classification of an operation, statistics recording gated
by the warm-up/cool-down window, and inter-request pacing. `ThreadedLoadJob`
wires those pieces up once per run and runs one loop per worker thread.
"""

from __future__ import annotations

import random
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from loadgen.config import Settings, get_settings
from loadgen.control.rate_limiter import FixedRateBarrier, RequestPacer, build_rate_limiter
from loadgen.control.signals import Clock, StopSignal
from loadgen.control.window import StatsWindow
from loadgen.domain.errors import GenerationError, OperationError
from loadgen.domain.models import JobConfig, OperationOutcome
from loadgen.drivers.abstract import AbstractLoadJob, JobResult
from loadgen.operations.abstract import OperationChannel, OperationRequest, ResultCode
from loadgen.stats.operation_stats import JobStatistics
from loadgen.utils.logging import get_logger

log = get_logger(__name__)

ChannelFactory = Callable[[int], OperationChannel]


def derive_rngs(seed: Optional[int], count: int) -> List[random.Random]:
    """
    Independent random sources for `count` workers.

    Each is seeded from a shared parent so a fixed seed reproduces the whole
    run while no two workers draw correlated values.
    """
    parent = random.Random(seed)
    return [random.Random(parent.getrandbits(64)) for _ in range(count)]


def execute_classified(
    channel: OperationChannel,
    request: OperationRequest,
    threshold_ms: int,
    clock: Clock = time.perf_counter,
) -> OperationOutcome:
    """
    Run one operation and always come back with a classified outcome.

    Durations reported by the channel are used when available; otherwise the
    elapsed time around the call is.
    """
    started = clock()
    try:
        result = channel.execute(request)
        code, duration_ms = result.result_code, result.duration_ms
    except OperationError as exc:
        log.debug(
            "Operation failed",
            extra={"channel": channel.name, "result_code": exc.result_code, "error": str(exc)},
        )
        code = exc.result_code
        duration_ms = exc.duration_ms
    except Exception as exc:  # noqa: BLE001 - every outcome must be bucketed
        log.warning(
            "Unexpected channel error",
            extra={"channel": channel.name, "error": str(exc)},
            exc_info=True,
        )
        code = ResultCode.CLIENT_SIDE_FAILURE
        duration_ms = None
    if duration_ms is None:
        duration_ms = (clock() - started) * 1000.0
    return OperationOutcome.classify(code, duration_ms, threshold_ms)


class SyncOperationLoop:
    """Per-worker view of the shared run state."""

    def __init__(
        self,
        config: JobConfig,
        channel: OperationChannel,
        stats: JobStatistics,
        stop: StopSignal,
        limiter: Optional[FixedRateBarrier] = None,
        window: Optional[StatsWindow] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.config = config
        self.channel = channel
        self.stats = stats
        self.stop = stop
        self.limiter = limiter
        self.window = window
        self.clock = clock
        self.pacer = RequestPacer(config.time_between_requests_ms, stop, clock)

    def acquire(self) -> bool:
        """
        Pass the rate gate.

        Returns True when the iteration must be abandoned because the job is
        stopping; the caller loops back to its stop check.
        """
        if self.limiter is None:
            return self.stop.should_stop()
        return self.limiter.await_permit()

    def collecting(self) -> bool:
        return self.window.poll() if self.window is not None else True

    def perform(
        self, operation: str, build: Callable[[], OperationRequest]
    ) -> Optional[OperationOutcome]:
        """
        Build and dispatch one request, recording its outcome.

        Returns None when the request could not be generated; that attempt is
        counted as a client-side failure.
        """
        collecting = self.collecting()
        stats = self.stats.for_operation(operation)
        try:
            request = build()
        except GenerationError as exc:
            log.debug("Record generation failed", extra={"operation": operation, "error": str(exc)})
            if collecting:
                stats.record_failure(ResultCode.CLIENT_SIDE_FAILURE)
            return None
        outcome = execute_classified(
            self.channel, request, self.config.response_time_threshold_ms
        )
        if collecting:
            stats.record(outcome)
        return outcome

    def pace(self, started: float) -> bool:
        """Sleep out the inter-request delay; True if the job stopped meanwhile."""
        return self.pacer.pace(started)


def run_workers(
    name: str,
    count: int,
    target: Callable[[int], None],
    stop: StopSignal,
    join_interval: float = 0.2,
) -> List[BaseException]:
    """
    Run `target(index)` on `count` threads and wait for all of them.

    Exceptions escaping a worker are logged and returned rather than raised so
    one failing worker never takes the others down. KeyboardInterrupt in the
    waiting thread sets `stop` before propagating.
    """
    errors: List[BaseException] = []
    lock = threading.Lock()

    def _guarded(index: int) -> None:
        try:
            target(index)
        except Exception as exc:  # noqa: BLE001 - recorded on the job result
            log.exception(f"[WORKER FAILED] {name}-{index}", extra={"job": name, "worker": index})
            with lock:
                errors.append(exc)

    threads = [
        threading.Thread(target=_guarded, args=(index,), name=f"{name}-{index}", daemon=True)
        for index in range(count)
    ]
    for thread in threads:
        thread.start()
    try:
        for thread in threads:
            while thread.is_alive():
                thread.join(join_interval)
    except KeyboardInterrupt:
        stop.set()
        raise
    return errors


def open_channels(factory: ChannelFactory, count: int) -> List[OperationChannel]:
    """Open `count` channels, closing the ones already open if any fails."""
    channels: List[OperationChannel] = []
    try:
        for index in range(count):
            channels.append(factory(index))
    except Exception:
        for channel in channels:
            channel.close()
        raise
    return channels


def build_result(
    name: str,
    stats: JobStatistics,
    duration_seconds: float,
    stop: StopSignal,
    errors: Sequence[BaseException] = (),
    extra: Optional[Dict[str, Any]] = None,
    operations: Optional[int] = None,
) -> JobResult:
    if operations is None:
        operations = sum(bundle.completed.count for bundle in stats)
    result = JobResult(
        job=name,
        operations=operations,
        duration_seconds=duration_seconds,
        throughput_ops_per_sec=operations / duration_seconds if duration_seconds > 0 else 0.0,
        stopped_early=stop.cancelled,
        stats=stats.summary(),
        extra=extra or {},
    )
    if errors:
        result["error"] = "; ".join(f"{type(exc).__name__}: {exc}" for exc in errors)
    return result


class ThreadedLoadJob(AbstractLoadJob):
    """
    Template for jobs run by one synchronous worker thread per `threads`.

    Subclasses implement `run_worker`; `prepare` builds any shared per-run
    state and `extra` contributes variant-specific result fields.
    """

    categorize_response_times: bool = False

    def __init__(
        self,
        config: JobConfig,
        channel_factory: ChannelFactory,
        settings: Optional[Settings] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.config = config
        self.channel_factory = channel_factory
        self.settings = settings or get_settings()
        self.clock = clock

    def prepare(self, stop: StopSignal) -> None:
        """Hook run once per execution before any worker starts."""

    def run_worker(self, index: int, loop: SyncOperationLoop, rng: random.Random) -> None:
        raise NotImplementedError

    def extra(self) -> Dict[str, Any]:
        return {}

    def execute(self, stop: Optional[StopSignal] = None) -> JobResult:
        config = self.config
        stop = stop or StopSignal(clock=self.clock, poll_interval=self.settings.stop_poll_seconds)
        stop.cap(config.duration_seconds)

        stats = JobStatistics(self.categorize_response_times, self.clock)
        window = StatsWindow(
            config.warm_up_seconds,
            config.cool_down_seconds,
            stop.deadline,
            self.clock,
            on_start=stats.start,
            on_stop=stats.stop,
        )
        limiter = build_rate_limiter(config, stop, self.clock)
        rngs = derive_rngs(config.seed, config.threads)
        channels = open_channels(self.channel_factory, config.threads)
        self.prepare(stop)

        def _worker(index: int) -> None:
            loop = SyncOperationLoop(
                config, channels[index], stats, stop, limiter, window, self.clock
            )
            self.run_worker(index, loop, rngs[index])

        log.info(
            f"[JOB START] {self.name}",
            extra={
                "job": self.name,
                "threads": config.threads,
                "max_rate": config.max_rate,
                "duration_seconds": config.duration_seconds,
            },
        )
        started = self.clock()
        try:
            errors = run_workers(self.name, config.threads, _worker, stop)
        finally:
            window.close()
            for channel in channels:
                channel.close()
        duration = self.clock() - started

        result = build_result(self.name, stats, duration, stop, errors, self.extra())
        log.info(
            f"[JOB COMPLETE] {self.name}",
            extra={
                "job": self.name,
                "operations": result["operations"],
                "duration": round(duration, 3),
                "stopped_early": result["stopped_early"],
            },
        )
        return result


__all__ = [
    "ChannelFactory",
    "SyncOperationLoop",
    "ThreadedLoadJob",
    "build_result",
    "derive_rngs",
    "execute_classified",
    "open_channels",
    "run_workers",
]
