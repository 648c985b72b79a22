from __future__ import annotations

import base64
import random
import re

from loadgen.templating.expander import GenerationContext, RecordGenerator, expand
from loadgen.templating.template import compile_template

FIRST_RECORD = 10
SAMPLES = 200

PERSON_TEMPLATE = [
    "objectClass: person",
    "uid: <entryNumber>",
    "cn: {uid}-x",
    "sn: <random:alpha:3:8>",
    "employeeNumber: <sequential:1000>",
    "telephoneNumber: <random:telephone>",
    "description: <random:month:3> <guid>",
]


def _generate(lines, number: int = FIRST_RECORD, seed: int = 7):
    generator = RecordGenerator(compile_template(lines), FIRST_RECORD)
    return generator.generate(random.Random(seed), number)


def test_record_number_and_backreference_end_to_end() -> None:
    record = _generate(["uid: <entryNumber>", "cn: {uid}-x"])

    assert record.first("uid") == "10"
    assert record.first("cn") == "10-x"


def test_same_seed_reproduces_the_same_record() -> None:
    first = _generate(PERSON_TEMPLATE, 12, seed=99)
    second = _generate(PERSON_TEMPLATE, 12, seed=99)

    assert first == second


def test_different_seed_keeps_the_shape() -> None:
    first = _generate(PERSON_TEMPLATE, 12, seed=1)
    second = _generate(PERSON_TEMPLATE, 12, seed=2)

    assert first.names == second.names
    assert first.first("uid") == second.first("uid") == "12"
    assert first.first("employeeNumber") == second.first("employeeNumber") == "1002"
    assert re.fullmatch(r"\d{3}-\d{3}-\d{4}", first.first("telephoneNumber"))
    assert 3 <= len(second.first("sn")) <= 8


def test_numeric_range_stays_in_bounds() -> None:
    template = compile_template(["n: <random:numeric:5:9>"])
    rng = random.Random(3)

    values = {
        int(expand(template, GenerationContext(0, 0, rng)).first("n")) for _ in range(SAMPLES)
    }

    assert values <= set(range(5, 10))
    assert len(values) > 1


def test_numeric_range_is_zero_padded_to_width() -> None:
    template = compile_template(["n: <random:numeric:5:9:3>"])
    rng = random.Random(3)

    for _ in range(20):
        value = expand(template, GenerationContext(0, 0, rng)).first("n")
        assert len(value) == 3
        assert value.startswith("00")


def test_truncated_backreference() -> None:
    record = _generate(["givenName: Alexander", "initials: {givenName:3}"])

    assert record.first("initials") == "Ale"


def test_zero_length_backreference_keeps_whole_value() -> None:
    record = _generate(["uid: alexander", "cn: [{uid:0}]"])

    assert record.first("cn") == "[alexander]"


def test_month_length_truncates_including_zero() -> None:
    record = _generate(["short: [<random:month:3>]", "empty: [<random:month:0>]", "full: <random:month>"])

    assert re.fullmatch(r"\[[A-Z][a-z]{2}\]", record.first("short"))
    assert record.first("empty") == "[]"
    assert len(record.first("full")) >= 3


def test_backreference_to_unset_attribute_renders_empty() -> None:
    record = _generate(["cn: [{missing}]", "missing: late"])

    assert record.first("cn") == "[]"


def test_escaped_brace_is_literal() -> None:
    record = _generate(["description: \\{uid}"])

    assert record.first("description") == "{uid}"


def test_presence_zero_and_hundred() -> None:
    lines = ["always: yes<presence:100>", "never: no<presence:0>"]
    rng = random.Random(5)
    generator = RecordGenerator(compile_template(lines))

    for number in range(50):
        record = generator.generate(rng, number)
        assert record.first("always") == "yes"
        assert "never" not in record


def test_conditions_see_only_earlier_lines() -> None:
    lines = [
        "before: x<ifpresent:uid>",
        "uid: <entryNumber>",
        "after: y<ifpresent:uid>",
        "gated: z<ifpresent:uid:10>",
        "absent: w<ifabsent:mail>",
        "wrongValue: v<ifpresent:uid:11>",
    ]
    record = _generate(lines)

    assert "before" not in record
    assert record.first("after") == "y"
    assert record.first("gated") == "z"
    assert record.first("absent") == "w"
    assert "wrongValue" not in record


def test_repeated_attribute_lines_keep_every_value() -> None:
    record = _generate(["objectClass: top", "objectClass: person", "cn: {objectClass}"])

    assert record.values("objectClass") == ["top", "person"]
    assert record.first("cn") == "top"


def test_base64_wrapper_encodes_resolved_content() -> None:
    record = _generate(["uid: <entryNumber>", "secret: <base64:pw-{uid}>"])

    assert base64.b64decode(record.first("secret")).decode("utf-8") == "pw-10"


def test_generated_text_is_not_rescanned() -> None:
    record = _generate(["raw: <entryNumber>\\{x}", "copy: {raw}"])

    assert record.first("copy") == "10{x}"


def test_sequence_counts_from_first_record() -> None:
    generator = RecordGenerator(compile_template(["seq: <sequential:100>"]), FIRST_RECORD)
    rng = random.Random(0)

    values = [generator.generate(rng, number).first("seq") for number in (10, 11, 15)]

    assert values == ["100", "101", "105"]


def test_key_is_attached_to_generated_record() -> None:
    generator = RecordGenerator(compile_template(["uid: <entryNumber>"]))

    record = generator.generate(random.Random(0), 4, key="uid=4,ou=people")

    assert record.key == "uid=4,ou=people"
    assert record.to_ldif().splitlines()[0] == "dn: uid=4,ou=people"
