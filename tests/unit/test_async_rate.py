from __future__ import annotations

import asyncio

import pytest

from loadgen.control.signals import StopSignal
from loadgen.control.window import StatsWindow
from loadgen.domain.errors import GenerationError, OperationError
from loadgen.domain.models import AsyncRateOptions, JobConfig, SelectionMode
from loadgen.drivers.async_rate import AsyncRateJob, ChannelSlot
from loadgen.operations.abstract import OperationResult, ResultCode, SearchRequest
from loadgen.operations.memory import AsyncMemoryChannel
from loadgen.orchestrator import build_memory_directory
from loadgen.stats.operation_stats import JobStatistics

MAX_OUTSTANDING = 3
CONNECTIONS = 2


class _ProbeChannel:
    """Async channel that tracks how many requests are in flight at once."""

    def __init__(self, name: str, probe: dict, latency: float = 0.01, error_code: str = None) -> None:
        self.name = name
        self.probe = probe
        self.latency = latency
        self.error_code = error_code
        self.closed = False
        self.calls = 0

    async def execute_async(self, request) -> OperationResult:
        self.calls += 1
        self.probe["in_flight"] += 1
        self.probe["peak"] = max(self.probe["peak"], self.probe["in_flight"])
        try:
            await asyncio.sleep(self.latency)
            if self.error_code is not None:
                raise OperationError(self.error_code, "injected failure")
            return OperationResult(ResultCode.SUCCESS, self.latency * 1000)
        finally:
            self.probe["in_flight"] -= 1

    async def close(self) -> None:
        self.closed = True


def _probe_factory(**kwargs):
    probe = {"in_flight": 0, "peak": 0}
    channels = []

    async def _factory(index: int) -> _ProbeChannel:
        channel = _ProbeChannel(f"probe-{index}", probe, **kwargs)
        channels.append(channel)
        return channel

    return _factory, probe, channels


def _config(**overrides) -> JobConfig:
    values = dict(threads=1, last_record_number=19, duration_seconds=1, seed=3)
    values.update(overrides)
    return JobConfig(**values)


@pytest.mark.asyncio
async def test_execute_async_searches_memory_records(test_settings) -> None:
    config = _config()
    directory = build_memory_directory(config, preload=True)

    async def _factory(index: int) -> AsyncMemoryChannel:
        return AsyncMemoryChannel(directory, name=f"memory-{index}", latency_ms=1)

    job = AsyncRateJob(
        config,
        _factory,
        AsyncRateOptions(operation="search", connections=CONNECTIONS, max_outstanding=4),
        settings=test_settings,
    )

    result = await job.execute_async()

    search = result["stats"]["search"]
    per_channel = [result["stats"][f"search[{conn}]"]["completed"] for conn in range(CONNECTIONS)]
    assert search["completed"] > 0
    assert search["result_codes"] == {"success": search["completed"]}
    assert sum(per_channel) == search["completed"]
    assert result["operations"] == search["completed"]
    assert result["extra"]["selection_mode"] == "fewest_outstanding"


@pytest.mark.asyncio
async def test_execute_refuses_to_run_inside_an_event_loop(test_settings) -> None:
    factory, _, _ = _probe_factory()
    job = AsyncRateJob(_config(), factory, AsyncRateOptions(operation="search"), settings=test_settings)

    with pytest.raises(RuntimeError, match="execute_async"):
        job.execute()


def test_execute_runs_its_own_loop_from_sync_code(test_settings) -> None:
    factory, _, channels = _probe_factory()
    job = AsyncRateJob(
        _config(max_rate=20, rate_interval_seconds=1),
        factory,
        AsyncRateOptions(operation="search"),
        settings=test_settings,
    )

    result = job.execute()

    assert 0 < result["operations"] <= 20
    assert all(channel.closed for channel in channels)


@pytest.mark.asyncio
async def test_in_flight_work_never_exceeds_max_outstanding(test_settings) -> None:
    factory, probe, channels = _probe_factory(latency=0.02)
    job = AsyncRateJob(
        _config(),
        factory,
        AsyncRateOptions(
            operation="search",
            connections=CONNECTIONS,
            max_outstanding=MAX_OUTSTANDING,
            selection_mode=SelectionMode.ROUND_ROBIN,
        ),
        settings=test_settings,
    )

    result = await job.execute_async()

    assert probe["peak"] == MAX_OUTSTANDING
    assert probe["in_flight"] == 0
    assert result["extra"]["cancelled_in_flight"] == 0
    # Round-robin spreads the work evenly over the connections.
    assert abs(channels[0].calls - channels[1].calls) <= 1


@pytest.mark.asyncio
async def test_permits_are_released_after_failures(test_settings) -> None:
    factory, probe, _ = _probe_factory(latency=0.005, error_code=ResultCode.SERVER_DOWN)
    job = AsyncRateJob(
        _config(),
        factory,
        AsyncRateOptions(operation="search", max_outstanding=1),
        settings=test_settings,
    )

    result = await job.execute_async()

    search = result["stats"]["search"]
    # A leaked permit would stall the loop after the first failure.
    assert search["completed"] > 5
    assert search["result_codes"] == {"server_down": search["completed"]}
    assert probe["in_flight"] == 0


@pytest.mark.asyncio
async def test_generation_failures_release_their_permit(test_settings) -> None:
    factory, _, channels = _probe_factory()
    job = AsyncRateJob(
        _config(template_lines=["description: <random:alpha:4>"], max_rate=10, rate_interval_seconds=1),
        factory,
        AsyncRateOptions(operation="modify", max_outstanding=1),
        settings=test_settings,
    )

    def _fail(rng):
        raise GenerationError("no values")

    job._make_request = _fail

    result = await job.execute_async()

    modify = result["stats"]["modify"]
    assert modify["completed"] == 0
    assert modify["result_codes"]["client_side_failure"] == 10
    assert channels[0].calls == 0


@pytest.mark.asyncio
async def test_slow_operations_are_cancelled_after_the_drain_timeout(test_settings) -> None:
    settings = test_settings.model_copy(update={"drain_timeout_seconds": 0.05})
    factory, probe, _ = _probe_factory(latency=30)
    job = AsyncRateJob(
        _config(duration_seconds=None),
        factory,
        AsyncRateOptions(operation="search", max_outstanding=2),
        settings=settings,
    )
    stop = StopSignal(poll_interval=0.01)
    asyncio.get_running_loop().call_later(0.1, stop.set)

    result = await job.execute_async(stop)

    assert result["extra"]["cancelled_in_flight"] == 2
    assert result["operations"] == 0
    assert result["stopped_early"] is True
    assert probe["in_flight"] == 0


@pytest.mark.asyncio
async def test_outcomes_follow_window_state_at_dispatch(test_settings, fake_clock) -> None:
    job = AsyncRateJob(_config(), _probe_factory()[0], settings=test_settings, clock=fake_clock)
    stats = JobStatistics(clock=fake_clock)
    window = StatsWindow(
        1, 1, fake_clock.now + 10, fake_clock, on_start=stats.start, on_stop=stats.stop
    )
    job_stats = stats.for_operation("search")
    channel = _ProbeChannel("slow", {"in_flight": 0, "peak": 0}, latency=0)
    slot = ChannelSlot(channel, stats.for_operation("search[0]"))
    permits = asyncio.Semaphore(2)

    warm_up_dispatch = window.poll()
    fake_clock.advance(2)
    collecting_dispatch = window.poll()
    for _ in range(2):
        await permits.acquire()
        slot.outstanding += 1
    assert (warm_up_dispatch, collecting_dispatch) == (False, True)

    # The collecting request completes only after cool-down has begun.
    fake_clock.advance(8)
    assert window.poll() is False
    await job._complete(
        slot, SearchRequest("uid=1"), fake_clock.now - 8, collecting_dispatch, permits, job_stats
    )
    await job._complete(
        slot, SearchRequest("uid=2"), fake_clock.now, warm_up_dispatch, permits, job_stats
    )

    assert job_stats.completed.count == 1
    assert slot.stats.completed.count == 1
    assert job_stats.result_codes.counts == {ResultCode.SUCCESS: 1}
    assert slot.outstanding == 0
    assert not permits.locked()
    for _ in range(2):
        await asyncio.wait_for(permits.acquire(), timeout=0.1)
