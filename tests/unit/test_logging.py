from __future__ import annotations

import json
import logging
import sys

from loadgen.utils.logging import DRIVER_LOGGERS, JsonFormatter, _json_formatter, configure_logging

EXPECTED_OPERATIONS = 10
EXPECTED_THREADS = 4


def _record(msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_json_formatter_promotes_standard_extra_fields() -> None:
    record = _record()
    record.operations = EXPECTED_OPERATIONS
    record.job = "add_delete"

    payload = json.loads(_json_formatter(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "test.logger"
    assert payload["message"] == "hello"
    assert payload["operations"] == EXPECTED_OPERATIONS
    assert payload["job"] == "add_delete"
    assert "pathname" not in payload


def test_json_formatter_supports_nested_extra_field() -> None:
    record = _record()
    record.extra = {"threads": EXPECTED_THREADS}

    payload = json.loads(_json_formatter(record))

    assert payload["threads"] == EXPECTED_THREADS
    assert "extra" not in payload


def test_json_formatter_includes_exception_text() -> None:
    try:
        raise ValueError("bad template")
    except ValueError:
        record = _record("[JOB FAILED] add_delete")
        record.exc_info = sys.exc_info()

    payload = json.loads(_json_formatter(record))

    assert "ValueError: bad template" in payload["exc_info"]


def test_json_formatter_tags_timestamp_and_thread() -> None:
    payload = json.loads(_json_formatter(_record()))

    assert payload["thread"] == "MainThread"
    assert payload["ts"].endswith("+00:00")


def test_configure_logging_quiets_driver_loggers() -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    saved_driver_levels = {name: logging.getLogger(name).level for name in DRIVER_LOGGERS}
    try:
        configure_logging(level="info", json_logs=True)
        assert root.level == logging.INFO
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
        assert logging.getLogger("psycopg.pool").level == logging.WARNING

        configure_logging(level="DEBUG")
        assert logging.getLogger("asyncpg").level == logging.DEBUG
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
        for name, level in saved_driver_levels.items():
            logging.getLogger(name).setLevel(level)
