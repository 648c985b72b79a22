"""
Template compiler.

A template is an ordered list of ``name: expression`` lines. Each expression
is tokenized once, at compile time, into typed segments:

- literal text
- inclusion guards: ``<presence:N>``, ``<ifpresent:attr[:value]>``,
  ``<ifabsent:attr[:value]>``
- generators: ``<entryNumber>``, ``<sequential[:start]>``, ``<guid>``,
  ``<random:alpha|numeric|alphanumeric|hex|base64:N[:M]>``,
  ``<random:numeric:low:high[:width]>``, ``<random:chars:SET:N[:M]>``,
  ``<random:telephone>``, ``<random:month[:N]>``
- backreferences: ``{attr}`` and ``{attr:N}`` (``\\{`` is a literal brace)
- the literal-encoding wrapper ``<base64:...>``, whose content may itself
  contain generators and backreferences

Angle-bracket text that does not start with a known token name is kept as a
literal. Malformed tokens are rejected here, so a template that compiles can
always be expanded.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Iterator, List, Optional, Sequence, Tuple

from loadgen.domain.errors import TemplateError
from loadgen.templating import random_values
from loadgen.templating.record import Record

if TYPE_CHECKING:  # pragma: no cover
    from loadgen.templating.expander import GenerationContext


class Segment:
    """Piece of a compiled expression that renders to text."""

    def render(self, context: "GenerationContext", record: Record) -> str:  # pragma: no cover
        raise NotImplementedError


class Guard:
    """Zero-width inclusion condition evaluated before a line is rendered."""

    rank = 0

    def allows(self, context: "GenerationContext", record: Record) -> bool:  # pragma: no cover
        raise NotImplementedError


@dataclass(frozen=True)
class Literal(Segment):
    text: str

    def render(self, context: "GenerationContext", record: Record) -> str:
        return self.text


@dataclass(frozen=True)
class PresenceGuard(Guard):
    percent: int
    rank = 0

    def allows(self, context: "GenerationContext", record: Record) -> bool:
        return context.rng.randint(1, 100) <= self.percent


@dataclass(frozen=True)
class IfPresentGuard(Guard):
    attribute: str
    value: Optional[str] = None
    rank = 1

    def allows(self, context: "GenerationContext", record: Record) -> bool:
        return record.has(self.attribute, self.value)


@dataclass(frozen=True)
class IfAbsentGuard(Guard):
    attribute: str
    value: Optional[str] = None
    rank = 2

    def allows(self, context: "GenerationContext", record: Record) -> bool:
        return not record.has(self.attribute, self.value)


@dataclass(frozen=True)
class RecordNumberToken(Segment):
    def render(self, context: "GenerationContext", record: Record) -> str:
        return str(context.record_number)


@dataclass(frozen=True)
class SequenceToken(Segment):
    start: int = 0

    def render(self, context: "GenerationContext", record: Record) -> str:
        return str(self.start + context.sequence_offset)


@dataclass(frozen=True)
class RandomStringToken(Segment):
    alphabet: str
    min_length: int
    max_length: int
    pad_base64: bool = False

    def render(self, context: "GenerationContext", record: Record) -> str:
        length = self.min_length
        if self.max_length != self.min_length:
            length = random_values.random_length(context.rng, self.min_length, self.max_length)
        if self.pad_base64:
            return random_values.random_base64(context.rng, length)
        return random_values.random_string(context.rng, self.alphabet, length)


@dataclass(frozen=True)
class NumericRangeToken(Segment):
    lower: int
    upper: int
    width: int = 0

    def render(self, context: "GenerationContext", record: Record) -> str:
        return random_values.random_number(context.rng, self.lower, self.upper, self.width)


@dataclass(frozen=True)
class TelephoneToken(Segment):
    def render(self, context: "GenerationContext", record: Record) -> str:
        return random_values.random_telephone(context.rng)


@dataclass(frozen=True)
class MonthToken(Segment):
    max_length: Optional[int] = None

    def render(self, context: "GenerationContext", record: Record) -> str:
        return random_values.random_month(context.rng, self.max_length)


@dataclass(frozen=True)
class GuidToken(Segment):
    def render(self, context: "GenerationContext", record: Record) -> str:
        return random_values.random_guid(context.rng)


@dataclass(frozen=True)
class BackReference(Segment):
    attribute: str
    max_chars: Optional[int] = None

    def render(self, context: "GenerationContext", record: Record) -> str:
        value = record.first(self.attribute) or ""
        if self.max_chars:
            value = value[: self.max_chars]
        return value


@dataclass(frozen=True)
class Base64Literal(Segment):
    children: Tuple[Segment, ...]

    def render(self, context: "GenerationContext", record: Record) -> str:
        text = "".join(child.render(context, record) for child in self.children)
        return base64.b64encode(text.encode("utf-8")).decode("ascii")


@dataclass(frozen=True)
class TemplateLine:
    """One compiled ``name: expression`` line."""

    line_number: int
    name: str
    expression: str
    guards: Tuple[Guard, ...]
    segments: Tuple[Segment, ...]


@dataclass(frozen=True)
class Template:
    """Immutable compiled template."""

    lines: Tuple[TemplateLine, ...]

    @property
    def attribute_names(self) -> List[str]:
        return [line.name for line in self.lines]

    @property
    def expressions(self) -> List[str]:
        return [line.expression for line in self.lines]

    def __iter__(self) -> Iterator[TemplateLine]:
        return iter(self.lines)

    def __len__(self) -> int:
        return len(self.lines)


_RANDOM_ALPHABETS = {
    "alpha": random_values.ALPHA_CHARS,
    "alphanumeric": random_values.ALPHANUMERIC_CHARS,
    "hex": random_values.HEX_CHARS,
    "base64": random_values.BASE64_CHARS,
}


class _ExpressionParser:
    """Recursive-descent tokenizer for a single expression."""

    def __init__(self, text: str, line_number: int, line: str, offset: int) -> None:
        self.text = text
        self.line_number = line_number
        self.line = line
        self.offset = offset
        self.pos = 0

    def fail(self, message: str, pos: Optional[int] = None) -> TemplateError:
        column = self.offset + (self.pos if pos is None else pos)
        return TemplateError(message, self.line_number, self.line, column)

    def parse(self) -> Tuple[Tuple[Guard, ...], Tuple[Segment, ...]]:
        guards: List[Guard] = []
        segments = self._segments(guards, nested=False)
        # Stable sort: guard families run in a fixed order, left-to-right within one.
        guards.sort(key=lambda guard: guard.rank)
        return tuple(guards), tuple(segments)

    def _segments(self, guards: Optional[List[Guard]], nested: bool) -> List[Segment]:
        segments: List[Segment] = []
        buffer: List[str] = []

        def flush() -> None:
            if buffer:
                segments.append(Literal("".join(buffer)))
                buffer.clear()

        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if nested and ch == ">":
                flush()
                return segments
            if ch == "\\" and text.startswith("{", self.pos + 1):
                buffer.append("{")
                self.pos += 2
            elif ch == "{":
                flush()
                segments.append(self._backreference())
            elif ch == "<":
                token = self._token(guards)
                if token is None:
                    buffer.append(ch)
                    self.pos += 1
                elif isinstance(token, Guard):
                    guards.append(token)  # type: ignore[union-attr]
                else:
                    flush()
                    segments.append(token)
            else:
                buffer.append(ch)
                self.pos += 1

        if nested:
            raise self.fail("missing closing '>' for <base64:...>")
        flush()
        return segments

    def _close(self, closer: str) -> int:
        close = self.text.find(closer, self.pos)
        if close < 0:
            raise self.fail(f"missing closing '{closer}'")
        return close

    def _int(self, raw: str, what: str, start: int) -> int:
        try:
            return int(raw)
        except ValueError:
            raise self.fail(f"{what} must be an integer, got {raw!r}", start) from None

    def _backreference(self) -> BackReference:
        start = self.pos
        close = self._close("}")
        body = self.text[start + 1 : close]
        name, sep, count = body.partition(":")
        if not name:
            raise self.fail("backreference is missing an attribute name", start)
        max_chars = None
        if sep:
            max_chars = self._int(count, "backreference length", start)
            if max_chars < 0:
                raise self.fail("backreference length must not be negative", start)
        self.pos = close + 1
        return BackReference(name, max_chars)

    def _token(self, guards: Optional[List[Guard]]):
        text, start = self.text, self.pos
        if text.startswith("<base64:", start):
            self.pos = start + len("<base64:")
            children = self._segments(None, nested=True)
            self.pos += 1
            return Base64Literal(tuple(children))

        for keyword, factory in (
            ("presence:", self._presence),
            ("ifpresent:", lambda body, at: self._condition(IfPresentGuard, body, at)),
            ("ifabsent:", lambda body, at: self._condition(IfAbsentGuard, body, at)),
        ):
            if text.startswith(keyword, start + 1):
                if guards is None:
                    raise self.fail("inclusion guards are not allowed inside <base64:...>")
                close = self._close(">")
                guard = factory(text[start + 1 + len(keyword) : close], start)
                self.pos = close + 1
                return guard

        if text.startswith("<entryNumber>", start) or text.startswith("<entrynumber>", start):
            self.pos = start + len("<entryNumber>")
            return RecordNumberToken()
        if text.startswith("<guid>", start):
            self.pos = start + len("<guid>")
            return GuidToken()
        if text.startswith("<sequential", start) and text[start + 11 : start + 12] in (">", ":"):
            close = self._close(">")
            body = text[start + 11 : close]
            first = self._int(body[1:], "sequential start", start) if body else 0
            self.pos = close + 1
            return SequenceToken(first)
        if text.startswith("<random:", start):
            close = self._close(">")
            token = self._random(text[start + len("<random:") : close].split(":"), start)
            self.pos = close + 1
            return token
        return None

    def _presence(self, body: str, start: int) -> PresenceGuard:
        percent = self._int(body, "presence percentage", start)
        if not 0 <= percent <= 100:
            raise self.fail("presence percentage must be between 0 and 100", start)
        return PresenceGuard(percent)

    def _condition(self, kind, body: str, start: int) -> Guard:
        name, sep, value = body.partition(":")
        if not name:
            raise self.fail("condition is missing an attribute name", start)
        return kind(name, value if sep else None)

    def _lengths(self, args: Sequence[str], start: int) -> Tuple[int, int]:
        if len(args) not in (1, 2):
            raise self.fail("expected a length or a min:max length range", start)
        values = [self._int(arg, "length", start) for arg in args]
        low, high = values[0], values[-1]
        if low < 0 or high < low:
            raise self.fail(f"invalid length range {low}:{high}", start)
        return low, high

    def _random(self, parts: List[str], start: int) -> Segment:
        kind, args = parts[0], parts[1:]
        if kind in _RANDOM_ALPHABETS:
            low, high = self._lengths(args, start)
            return RandomStringToken(_RANDOM_ALPHABETS[kind], low, high, pad_base64=kind == "base64")
        if kind == "numeric":
            if len(args) == 1:
                low, high = self._lengths(args, start)
                return RandomStringToken(random_values.NUMERIC_CHARS, low, high)
            if len(args) in (2, 3):
                lower = self._int(args[0], "numeric lower bound", start)
                upper = self._int(args[1], "numeric upper bound", start)
                if upper < lower:
                    raise self.fail(f"numeric range {lower}:{upper} is empty", start)
                width = self._int(args[2], "numeric width", start) if len(args) == 3 else 0
                return NumericRangeToken(lower, upper, width)
            raise self.fail("numeric token expects N, low:high or low:high:width", start)
        if kind == "chars":
            if not args or not args[0]:
                raise self.fail("chars token needs a non-empty character set", start)
            low, high = self._lengths(args[1:], start)
            return RandomStringToken(args[0], low, high)
        if kind == "telephone" and not args:
            return TelephoneToken()
        if kind == "month":
            if not args:
                return MonthToken()
            if len(args) == 1:
                length = self._int(args[0], "month length", start)
                if length < 0:
                    raise self.fail("month length must not be negative", start)
                return MonthToken(length)
        raise self.fail(f"unsupported random token '{':'.join(parts)}'", start)


def _split_line(line: str, line_number: int) -> Tuple[str, str, int]:
    colon = line.find(":")
    if colon < 0:
        raise TemplateError(
            "no ':' separating the attribute name from the value", line_number, line, len(line)
        )
    if colon == 0:
        raise TemplateError("no attribute name before ':'", line_number, line, 0)
    if colon == len(line) - 1:
        raise TemplateError("no attribute value after ':'", line_number, line, colon)

    following = line[colon + 1]
    if following == ":":
        raise TemplateError(
            "base64-encoded values ('::') are not supported", line_number, line, colon + 1
        )
    if following != " ":
        raise TemplateError(
            f"illegal character {following!r} after ':'", line_number, line, colon + 1
        )

    rest = line[colon + 2 :]
    value = rest.strip()
    if not value:
        raise TemplateError("no attribute value after ':'", line_number, line, colon)
    offset = colon + 2 + (len(rest) - len(rest.lstrip()))
    return line[:colon], value, offset


def compile_template(lines: Iterable[str]) -> Template:
    """
    Compile template lines into an immutable `Template`.

    Blank lines are skipped. Any malformed line raises `TemplateError` naming
    the line and column, before a single record is generated.
    """
    compiled: List[TemplateLine] = []
    for line_number, raw in enumerate(lines, start=1):
        line = raw.rstrip("\r\n")
        if not line.strip():
            continue
        name, expression, offset = _split_line(line, line_number)
        guards, segments = _ExpressionParser(expression, line_number, line, offset).parse()
        compiled.append(TemplateLine(line_number, name, expression, guards, segments))
    return Template(tuple(compiled))


__all__ = [
    "BackReference",
    "Base64Literal",
    "Guard",
    "Literal",
    "Segment",
    "Template",
    "TemplateLine",
    "compile_template",
]
