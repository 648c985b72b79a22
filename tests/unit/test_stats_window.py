from __future__ import annotations

import math

from loadgen.control.window import StatsWindow, WindowState

WARM_UP = 2
COOL_DOWN = 1
RUN_SECONDS = 5


class _Transitions:
    def __init__(self) -> None:
        self.events: list = []

    def started(self) -> None:
        self.events.append("start")

    def stopped(self) -> None:
        self.events.append("stop")


def test_warm_up_then_cool_down(fake_clock) -> None:
    transitions = _Transitions()
    window = StatsWindow(
        WARM_UP,
        COOL_DOWN,
        stop_time=fake_clock() + RUN_SECONDS,
        clock=fake_clock,
        on_start=transitions.started,
        on_stop=transitions.stopped,
    )
    observed = []
    for _ in range(12):
        observed.append(window.poll())
        fake_clock.advance(0.5)

    # Polls at 0.0 .. 5.5s: collecting only in [2s, 4s).
    assert observed == [False] * 4 + [True] * 4 + [False] * 4
    assert transitions.events == ["start", "stop"]
    assert window.state is WindowState.STOPPED


def test_zero_warm_up_collects_immediately(fake_clock) -> None:
    transitions = _Transitions()
    window = StatsWindow(0, 0, None, fake_clock, on_start=transitions.started)

    assert window.collecting
    assert window.stop_collecting_at == math.inf
    assert transitions.events == ["start"]


def test_cool_down_ignored_without_stop_time(fake_clock) -> None:
    window = StatsWindow(0, COOL_DOWN, None, fake_clock)
    fake_clock.advance(10_000)

    assert window.poll() is True


def test_window_that_closes_before_it_opens_never_collects(fake_clock) -> None:
    transitions = _Transitions()
    window = StatsWindow(
        3,
        3,
        stop_time=fake_clock() + 4,
        clock=fake_clock,
        on_start=transitions.started,
        on_stop=transitions.stopped,
    )
    fake_clock.advance(3.5)

    assert window.poll() is False
    assert window.state is WindowState.STOPPED
    assert transitions.events == []


def test_close_stops_collection_once(fake_clock) -> None:
    transitions = _Transitions()
    window = StatsWindow(0, 0, None, fake_clock, transitions.started, transitions.stopped)

    window.close()
    window.close()

    assert transitions.events == ["start", "stop"]
    assert window.poll() is False
