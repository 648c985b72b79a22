"""
Templated record generation.

`compile_template` turns ``name: expression`` lines into an immutable
`Template`; `expand` / `RecordGenerator` turn it into concrete `Record`s.
"""

from loadgen.templating.expander import GenerationContext, RecordGenerator, expand
from loadgen.templating.record import Record
from loadgen.templating.template import Template, TemplateLine, compile_template

__all__ = [
    "GenerationContext",
    "Record",
    "RecordGenerator",
    "Template",
    "TemplateLine",
    "compile_template",
    "expand",
]
