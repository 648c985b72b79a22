from __future__ import annotations

from types import SimpleNamespace

import pytest

from loadgen.control.selector import ConnectionSelector
from loadgen.domain.models import SelectionMode


def _channels(*outstanding: int) -> list:
    return [SimpleNamespace(outstanding=count) for count in outstanding]


def test_round_robin_cycles_through_channels() -> None:
    selector = ConnectionSelector(_channels(5, 0, 9), SelectionMode.ROUND_ROBIN)

    assert [selector.select() for _ in range(7)] == [0, 1, 2, 0, 1, 2, 0]


def test_fewest_outstanding_picks_the_least_busy() -> None:
    channels = _channels(4, 2, 3)
    selector = ConnectionSelector(channels, SelectionMode.FEWEST_OUTSTANDING)

    assert selector.select() == 1
    channels[1].outstanding = 6
    assert selector.select() == 2


def test_fewest_outstanding_ties_go_to_the_first_channel() -> None:
    selector = ConnectionSelector(_channels(2, 1, 1), "fewest_outstanding")

    assert selector.select() == 1


def test_fewest_outstanding_takes_an_idle_channel_immediately() -> None:
    selector = ConnectionSelector(_channels(3, 0, 0), SelectionMode.FEWEST_OUTSTANDING)

    assert selector.select() == 1


def test_selector_requires_channels() -> None:
    with pytest.raises(ValueError):
        ConnectionSelector([], SelectionMode.ROUND_ROBIN)
