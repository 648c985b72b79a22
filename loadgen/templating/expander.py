"""
Template expansion.

Lines are expanded in template order. For each line the evaluation contract
is fixed:

1. inclusion guards, in family order (presence, then ifpresent, then
   ifabsent) and left-to-right within a family; the first guard that fails
   drops the line and no further guard is evaluated for it
2. generator tokens, left-to-right (random draws happen in this order)
3. backreferences, which only see attributes added by earlier lines
4. ``<base64:...>`` wrappers, which encode their already-resolved content

Backreferences and base64 wrappers consume no randomness and the record is
not modified while a line renders, so a single left-to-right render of the
segments yields the same value as running steps 2-4 as separate passes.
Generated text is never re-scanned for tokens.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Optional

from loadgen.domain.errors import GenerationError
from loadgen.templating.record import Record
from loadgen.templating.template import Template, TemplateLine


@dataclass(frozen=True)
class GenerationContext:
    """Inputs for generating one record."""

    record_number: int
    sequence_offset: int
    rng: random.Random = field(compare=False)

    @classmethod
    def for_record(
        cls, record_number: int, first_record_number: int, rng: random.Random
    ) -> "GenerationContext":
        return cls(record_number, record_number - first_record_number, rng)


def expand_line(line: TemplateLine, context: GenerationContext, record: Record) -> Optional[str]:
    """Render one template line, or return None when a guard suppresses it."""
    for guard in line.guards:
        if not guard.allows(context, record):
            return None
    return "".join(segment.render(context, record) for segment in line.segments)


def expand(template: Template, context: GenerationContext, key: Optional[str] = None) -> Record:
    """
    Produce a concrete record from a compiled template.

    Raises
    ------
    GenerationError
        If a line cannot be rendered; the record as a whole is unusable.
    """
    record = Record(key)
    for line in template:
        try:
            value = expand_line(line, context, record)
        except (ValueError, IndexError) as exc:
            raise GenerationError(
                f"Unable to expand line {line.line_number} ({line.name}): {exc}"
            ) from exc
        if value is not None:
            record.add(line.name, value)
    return record


class RecordGenerator:
    """
    Binds a compiled template to the first record number of a run.

    Sequence tokens count from that first record, so record ``first + 5``
    renders ``<sequential:100>`` as ``105``.
    """

    def __init__(self, template: Template, first_record_number: int = 0) -> None:
        self.template = template
        self.first_record_number = first_record_number

    def generate(
        self, rng: random.Random, record_number: int, key: Optional[str] = None
    ) -> Record:
        context = GenerationContext.for_record(record_number, self.first_record_number, rng)
        return expand(self.template, context, key)


__all__ = ["GenerationContext", "RecordGenerator", "expand", "expand_line"]
