"""
Asynchronous rate job.

Each of the configured `threads` dispatch loops owns `connections` async
channels, a connection selector and an optional in-flight bound. A dispatch
loop passes the rate gate, acquires an in-flight permit, checks the
statistics window, picks a channel and hands the request to a completion task
without waiting for it. The completion task releases the permit and, only if
the window was collecting when the request was dispatched, records the
outcome against both the job-wide and the per-channel statistics.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Set

from loadgen.config import Settings, get_settings
from loadgen.control.rate_limiter import FixedRateBarrier, RequestPacer, build_rate_limiter
from loadgen.control.selector import ConnectionSelector
from loadgen.control.signals import Clock, StopSignal
from loadgen.control.window import StatsWindow
from loadgen.domain.errors import GenerationError, OperationError
from loadgen.domain.models import AsyncRateOptions, JobConfig, OperationOutcome
from loadgen.drivers.abstract import AbstractLoadJob, JobResult
from loadgen.drivers.base import build_result, derive_rngs
from loadgen.drivers.rate import build_generator, build_request_factory
from loadgen.operations.abstract import AsyncOperationChannel, OperationRequest, ResultCode
from loadgen.stats.operation_stats import JobStatistics, OperationStats
from loadgen.utils.logging import get_logger

log = get_logger(__name__)

AsyncChannelFactory = Callable[[int], Awaitable[AsyncOperationChannel]]


@dataclass
class ChannelSlot:
    """An async channel with its in-flight count and statistics."""

    channel: AsyncOperationChannel
    stats: OperationStats
    outstanding: int = 0


@dataclass
class _Dispatcher:
    index: int
    slots: List[ChannelSlot]
    selector: ConnectionSelector
    permits: Optional[asyncio.Semaphore]
    rng: random.Random
    pending: Set["asyncio.Task[None]"]


class AsyncRateJob(AbstractLoadJob):
    name: str = "async_rate"
    description: str = "Async searches or modifies over several connections with bounded in-flight work."

    def __init__(
        self,
        config: JobConfig,
        channel_factory: AsyncChannelFactory,
        options: Optional[AsyncRateOptions] = None,
        settings: Optional[Settings] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.config = config
        self.channel_factory = channel_factory
        self.options = options or AsyncRateOptions()
        self.settings = settings or get_settings()
        self.clock = clock
        self.operation = self.options.operation.value
        self._make_request = build_request_factory(
            config, self.options.operation, build_generator(config, self.options.operation)
        )
        self._stats: Optional[JobStatistics] = None
        self._window: Optional[StatsWindow] = None
        self._cancelled = 0

    def execute(self, stop: Optional[StopSignal] = None) -> JobResult:
        """
        Blocking entry point.

        Raises
        ------
        RuntimeError
            If called from a running event loop; use `execute_async` there.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(self.execute_async(stop))
        raise RuntimeError(
            "AsyncRateJob.execute() cannot be called from an async context; "
            "await execute_async() instead"
        )

    async def execute_async(self, stop: Optional[StopSignal] = None) -> JobResult:
        config = self.config
        stop = stop or StopSignal(clock=self.clock, poll_interval=self.settings.stop_poll_seconds)
        stop.cap(config.duration_seconds)

        stats = JobStatistics(self.options.categorize_response_times, self.clock)
        self._stats = stats
        self._window = StatsWindow(
            config.warm_up_seconds,
            config.cool_down_seconds,
            stop.deadline,
            self.clock,
            on_start=stats.start,
            on_stop=stats.stop,
        )
        self._cancelled = 0
        limiter = build_rate_limiter(config, stop, self.clock)
        pacer = RequestPacer(config.time_between_requests_ms, stop, self.clock)
        rngs = derive_rngs(config.seed, config.threads)

        dispatchers = await self._open_dispatchers(stats, rngs)
        log.info(
            f"[JOB START] {self.name}",
            extra={
                "job": self.name,
                "operation": self.operation,
                "dispatchers": config.threads,
                "connections": self.options.connections,
                "selection_mode": self.options.selection_mode.value,
                "max_outstanding": self.options.max_outstanding,
            },
        )
        started = self.clock()
        try:
            await asyncio.gather(
                *(self._dispatch_loop(d, stop, limiter, pacer) for d in dispatchers)
            )
        finally:
            self._window.close()
            await self._close_dispatchers(dispatchers)
        duration = self.clock() - started

        result = build_result(
            self.name,
            stats,
            duration,
            stop,
            operations=stats.for_operation(self.operation).completed.count,
            extra={
                "operation": self.operation,
                "selection_mode": self.options.selection_mode.value,
                "cancelled_in_flight": self._cancelled,
            },
        )
        log.info(
            f"[JOB COMPLETE] {self.name}",
            extra={"job": self.name, "operations": result["operations"], "duration": round(duration, 3)},
        )
        return result

    async def _open_dispatchers(
        self, stats: JobStatistics, rngs: List[random.Random]
    ) -> List[_Dispatcher]:
        dispatchers: List[_Dispatcher] = []
        try:
            for index in range(self.config.threads):
                slots = []
                for conn in range(self.options.connections):
                    channel = await self.channel_factory(index * self.options.connections + conn)
                    slots.append(
                        ChannelSlot(channel, stats.for_operation(f"{self.operation}[{conn}]"))
                    )
                permits = (
                    asyncio.Semaphore(self.options.max_outstanding)
                    if self.options.max_outstanding > 0
                    else None
                )
                dispatchers.append(
                    _Dispatcher(
                        index,
                        slots,
                        ConnectionSelector(slots, self.options.selection_mode),
                        permits,
                        rngs[index],
                        set(),
                    )
                )
        except Exception:
            await self._close_dispatchers(dispatchers)
            raise
        return dispatchers

    async def _close_dispatchers(self, dispatchers: List[_Dispatcher]) -> None:
        for dispatcher in dispatchers:
            for slot in dispatcher.slots:
                await slot.channel.close()

    async def _acquire_permit(self, permits: asyncio.Semaphore, stop: StopSignal) -> bool:
        """Wait for an in-flight permit; False if the job stopped first."""
        while not stop.should_stop():
            try:
                await asyncio.wait_for(permits.acquire(), timeout=stop.poll_interval)
                return True
            except asyncio.TimeoutError:
                continue
        return False

    async def _dispatch_loop(
        self,
        dispatcher: _Dispatcher,
        stop: StopSignal,
        limiter: Optional[FixedRateBarrier],
        pacer: RequestPacer,
    ) -> None:
        job_stats = self._stats.for_operation(self.operation)
        try:
            while not stop.should_stop():
                if limiter is not None and await limiter.await_permit_async():
                    continue
                if dispatcher.permits is not None:
                    if not await self._acquire_permit(dispatcher.permits, stop):
                        continue
                started = self.clock()
                collecting = self._window.poll()
                slot = dispatcher.slots[dispatcher.selector.select()]
                try:
                    request = self._make_request(dispatcher.rng)
                except GenerationError as exc:
                    log.debug("Record generation failed", extra={"error": str(exc)})
                    if collecting:
                        job_stats.record_failure(ResultCode.CLIENT_SIDE_FAILURE)
                        slot.stats.record_failure(ResultCode.CLIENT_SIDE_FAILURE)
                    if dispatcher.permits is not None:
                        dispatcher.permits.release()
                    continue
                slot.outstanding += 1
                task = asyncio.create_task(
                    self._complete(slot, request, started, collecting, dispatcher.permits, job_stats)
                )
                dispatcher.pending.add(task)
                task.add_done_callback(dispatcher.pending.discard)
                if await pacer.pace_async(started):
                    break
                # Let completions run between unthrottled dispatches.
                await asyncio.sleep(0)
        finally:
            await self._drain(dispatcher)

    async def _complete(
        self,
        slot: ChannelSlot,
        request: OperationRequest,
        dispatched_at: float,
        collecting: bool,
        permits: Optional[asyncio.Semaphore],
        job_stats: OperationStats,
    ) -> None:
        try:
            try:
                result = await slot.channel.execute_async(request)
                code = result.result_code
            except OperationError as exc:
                log.debug(
                    "Operation failed",
                    extra={"channel": slot.channel.name, "result_code": exc.result_code},
                )
                code = exc.result_code
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001 - every outcome must be bucketed
                log.warning(
                    "Unexpected channel error",
                    extra={"channel": slot.channel.name, "error": str(exc)},
                    exc_info=True,
                )
                code = ResultCode.CLIENT_SIDE_FAILURE
            if collecting:
                duration_ms = (self.clock() - dispatched_at) * 1000.0
                outcome = OperationOutcome.classify(
                    code, duration_ms, self.config.response_time_threshold_ms
                )
                job_stats.record(outcome)
                slot.stats.record(outcome)
        finally:
            slot.outstanding -= 1
            if permits is not None:
                permits.release()

    async def _drain(self, dispatcher: _Dispatcher) -> None:
        """Wait for in-flight work up to the drain timeout, then cancel the rest."""
        pending = set(dispatcher.pending)
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=self.settings.drain_timeout_seconds)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            self._cancelled += len(still_running)
            log.warning(
                "Cancelled in-flight operations at shutdown",
                extra={"dispatcher": dispatcher.index, "cancelled": len(still_running)},
            )


__all__ = ["AsyncRateJob", "ChannelSlot"]
