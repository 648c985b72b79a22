"""
Random value generators used by template tokens.

All functions draw exclusively from the `random.Random` instance they are
given, so a seeded source reproduces the same values.
"""

from __future__ import annotations

import random
import uuid
from typing import Optional, Sequence

NUMERIC_CHARS = "0123456789"
ALPHA_CHARS = "abcdefghijklmnopqrstuvwxyz"
ALPHANUMERIC_CHARS = ALPHA_CHARS + NUMERIC_CHARS
HEX_CHARS = "0123456789abcdef"
BASE64_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


def random_string(rng: random.Random, alphabet: Sequence[str], length: int) -> str:
    """Return `length` characters drawn uniformly from `alphabet`."""
    return "".join(rng.choice(alphabet) for _ in range(length))


def random_length(rng: random.Random, minimum: int, maximum: int) -> int:
    """Uniform draw over the inclusive range [minimum, maximum]."""
    return rng.randint(minimum, maximum)


def random_base64(rng: random.Random, length: int) -> str:
    """Base64-alphabet string, padded with '=' to a multiple of four characters."""
    value = random_string(rng, BASE64_CHARS, length)
    return value + "=" * (-length % 4)


def random_number(rng: random.Random, lower: int, upper: int, width: int = 0) -> str:
    """Integer in [lower, upper], left-padded with zeros to at least `width` digits."""
    value = str(rng.randint(lower, upper))
    if width > 0:
        value = value.zfill(width)
    return value


def random_telephone(rng: random.Random) -> str:
    digits = random_string(rng, NUMERIC_CHARS, 10)
    return f"{digits[:3]}-{digits[3:6]}-{digits[6:]}"


def random_month(rng: random.Random, max_length: Optional[int] = None) -> str:
    month = MONTH_NAMES[rng.randrange(len(MONTH_NAMES))]
    if max_length is not None:
        month = month[:max_length]
    return month


def random_guid(rng: random.Random) -> str:
    """Version-4 UUID built from the given source rather than os.urandom."""
    return str(uuid.UUID(int=rng.getrandbits(128), version=4))


__all__ = [
    "ALPHA_CHARS",
    "ALPHANUMERIC_CHARS",
    "BASE64_CHARS",
    "HEX_CHARS",
    "MONTH_NAMES",
    "NUMERIC_CHARS",
    "random_base64",
    "random_guid",
    "random_length",
    "random_month",
    "random_number",
    "random_string",
    "random_telephone",
]
