"""
Human-friendly duration parsing.

Accepts strings such as ``"90"``, ``"90s"``, ``"1h30m"`` or
``"1 day, 10 hours, 17 minutes, 36 seconds"`` and returns whole seconds.
Spaces and commas are ignored, so ``"123,456"`` is 123456 seconds.
"""

from __future__ import annotations

import re
from typing import Union

from loadgen.domain.errors import ConfigurationError

_UNITS = {
    "": 1,
    "s": 1,
    "sec": 1,
    "secs": 1,
    "second": 1,
    "seconds": 1,
    "m": 60,
    "min": 60,
    "mins": 60,
    "minute": 60,
    "minutes": 60,
    "h": 3600,
    "hr": 3600,
    "hrs": 3600,
    "hour": 3600,
    "hours": 3600,
    "d": 86400,
    "day": 86400,
    "days": 86400,
}

_COMPONENT = re.compile(r"(\d+)([a-z]*)")


def parse_duration(value: Union[str, int, float]) -> int:
    """Parse ``value`` into a number of seconds."""
    if isinstance(value, bool):
        raise ConfigurationError(f"Unable to parse {value!r} as a duration.")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ConfigurationError(f"Durations must not be negative (got {value}).")
        return int(value)

    compact = re.sub(r"[\s,]", "", value.lower())
    if not compact:
        raise ConfigurationError("Unable to parse a duration from an empty string.")

    total = 0
    pos = 0
    while pos < len(compact):
        match = _COMPONENT.match(compact, pos)
        if match is None:
            raise ConfigurationError(
                f"Unable to parse '{value}' as a duration: expected a number at "
                f"position {pos}."
            )
        number, unit = match.groups()
        if unit not in _UNITS:
            raise ConfigurationError(
                f"Unable to parse '{value}' as a duration: '{unit}' is not a supported unit."
            )
        total += int(number) * _UNITS[unit]
        pos = match.end()
    return total


__all__ = ["parse_duration"]
