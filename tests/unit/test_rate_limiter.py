from __future__ import annotations

import asyncio
import math
import threading
import time
from collections import Counter

import pytest

from loadgen.control.rate_limiter import FixedRateBarrier, RequestPacer, build_rate_limiter
from loadgen.control.signals import StopSignal
from loadgen.domain.errors import ConfigurationError
from loadgen.domain.models import JobConfig

PERMITS_PER_WINDOW = 3
INTERVAL_MS = 1000
REQUESTS = 10


def test_never_grants_more_than_the_window_allows(fake_clock) -> None:
    barrier = FixedRateBarrier(
        INTERVAL_MS, PERMITS_PER_WINDOW, clock=fake_clock, sleep=fake_clock.advance
    )
    start = fake_clock()
    windows: Counter = Counter()

    for _ in range(REQUESTS):
        assert barrier.await_permit() is False
        windows[math.floor((fake_clock() - start) * 1000 / INTERVAL_MS)] += 1

    assert windows == Counter({0: 3, 1: 3, 2: 3, 3: 1})


def test_idle_windows_do_not_accumulate_permits(fake_clock) -> None:
    barrier = FixedRateBarrier(
        INTERVAL_MS, PERMITS_PER_WINDOW, clock=fake_clock, sleep=fake_clock.advance
    )
    fake_clock.advance(5.5)
    start = fake_clock()

    for _ in range(PERMITS_PER_WINDOW + 1):
        barrier.await_permit()

    # The fourth permit waited for the next aligned window at +6s.
    assert fake_clock() - start == pytest.approx(0.5)
    assert barrier.window_start == pytest.approx(start + 0.5)


def test_shutdown_wakes_a_blocked_caller() -> None:
    stop = StopSignal(poll_interval=0.01)
    barrier = FixedRateBarrier(60_000, 1, stop=stop)
    assert barrier.await_permit() is False
    outcome = {}

    def _wait() -> None:
        outcome["stopped"] = barrier.await_permit()

    waiter = threading.Thread(target=_wait)
    waiter.start()
    time.sleep(0.05)
    barrier.shutdown()
    waiter.join(timeout=2.0)

    assert not waiter.is_alive()
    assert outcome["stopped"] is True


def test_async_permit_stops_with_the_signal() -> None:
    stop = StopSignal.after(0.05, poll_interval=0.01)
    barrier = FixedRateBarrier(60_000, 1, stop=stop)

    async def _take_two() -> tuple:
        return await barrier.await_permit_async(), await barrier.await_permit_async()

    assert asyncio.run(_take_two()) == (False, True)


@pytest.mark.parametrize("interval_ms,permits", [(0, 1), (1000, 0), (-5, 3)])
def test_invalid_barrier_settings_are_rejected(interval_ms: int, permits: int) -> None:
    with pytest.raises(ConfigurationError):
        FixedRateBarrier(interval_ms, permits)


def test_build_rate_limiter_uses_collection_interval_by_default() -> None:
    config = JobConfig(max_rate=50, collection_interval_seconds=5)

    barrier = build_rate_limiter(config, StopSignal())

    assert barrier.interval_ms == 5000
    assert barrier.permits_per_interval == 250


def test_build_rate_limiter_disabled_without_rate() -> None:
    assert build_rate_limiter(JobConfig(max_rate=0), StopSignal()) is None


def test_pacer_sleeps_out_the_remaining_interval(fake_clock) -> None:
    waits = []

    class _RecordingStop(StopSignal):
        def wait(self, timeout: float) -> bool:
            waits.append(timeout)
            return False

    pacer = RequestPacer(100, _RecordingStop(), clock=fake_clock)
    started = fake_clock()
    fake_clock.advance(0.03)

    assert pacer.pace(started) is False
    assert waits == [pytest.approx(0.07)]

    fake_clock.advance(0.2)
    pacer.pace(started)
    assert len(waits) == 1
