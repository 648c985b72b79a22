"""
Generated record representation.

A record is an ordered multimap from attribute name to values. Attribute
names are matched case-insensitively (as directory attribute types are) but
keep the spelling they were first added with.
"""

from __future__ import annotations

import base64
from typing import Dict, Iterator, List, Optional, Tuple


class Record:
    """Ordered attribute multimap produced by template expansion."""

    __slots__ = ("key", "_names", "_values")

    def __init__(self, key: Optional[str] = None) -> None:
        self.key = key
        self._names: Dict[str, str] = {}
        self._values: Dict[str, List[str]] = {}

    def add(self, name: str, value: str) -> None:
        folded = name.casefold()
        if folded not in self._values:
            self._names[folded] = name
            self._values[folded] = []
        self._values[folded].append(value)

    def first(self, name: str) -> Optional[str]:
        values = self._values.get(name.casefold())
        return values[0] if values else None

    def values(self, name: str) -> List[str]:
        return list(self._values.get(name.casefold(), ()))

    def has(self, name: str, value: Optional[str] = None) -> bool:
        values = self._values.get(name.casefold())
        if not values:
            return False
        return value is None or value in values

    @property
    def names(self) -> List[str]:
        return list(self._names.values())

    def items(self) -> Iterator[Tuple[str, str]]:
        """Yield ``(name, value)`` pairs grouped by attribute, in insertion order."""
        for folded, name in self._names.items():
            for value in self._values[folded]:
                yield name, value

    def to_dict(self) -> Dict[str, List[str]]:
        return {name: list(self._values[folded]) for folded, name in self._names.items()}

    def to_ldif(self) -> str:
        lines = []
        if self.key is not None:
            lines.append(f"dn: {self.key}")
        for name, value in self.items():
            if _needs_base64(value):
                encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
                lines.append(f"{name}:: {encoded}")
            else:
                lines.append(f"{name}: {value}")
        return "\n".join(lines) + "\n"

    def __len__(self) -> int:
        return sum(len(values) for values in self._values.values())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.casefold() in self._values

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self.key == other.key and list(self.items()) == list(other.items())

    def __repr__(self) -> str:
        return f"Record(key={self.key!r}, attributes={self.to_dict()!r})"


def _needs_base64(value: str) -> bool:
    if not value:
        return False
    if value[0] in " :<" or value[-1] == " ":
        return True
    return any(ord(ch) < 0x20 or ord(ch) > 0x7E for ch in value)


__all__ = ["Record"]
