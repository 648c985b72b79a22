"""
Integration smoke tests for load jobs against PostgreSQL.

These tests run against a real PostgreSQL instance and verify that:
1. The add/delete job round-trips a record range through the store
2. The rate jobs find records loaded by the data generation script
3. Basic performance metrics are captured

Run with: RUN_INTEGRATION_TESTS=1 pytest tests/integration/
"""

from __future__ import annotations

import os

import pytest

from loadgen.domain.models import AsyncRateOptions, JobConfig, TargetKind
from loadgen.orchestrator import render_records, run_job
from scripts.generate_data import _copy_into_db

# Test configuration constants
DEFAULT_THREADS = 2
DEFAULT_LAST_RECORD = 49
DEFAULT_SEED = 123
TEMPLATE = ["objectClass: person", "uid: <entryNumber>", "cn: {uid}-x", "sn: <random:alpha:8>"]

# Test expectation constants
EXPECTED_RECORDS = DEFAULT_LAST_RECORD + 1
MIN_THROUGHPUT_OPS_PER_SEC = 1

pytestmark = pytest.mark.skipif(
    os.getenv("RUN_INTEGRATION_TESTS", "0") != "1",
    reason="Integration tests require RUN_INTEGRATION_TESTS=1 and reachable Postgres",
)


def _config(**overrides) -> JobConfig:
    values = dict(
        threads=DEFAULT_THREADS,
        last_record_number=DEFAULT_LAST_RECORD,
        template_lines=TEMPLATE,
        target=TargetKind.POSTGRES,
        seed=DEFAULT_SEED,
    )
    values.update(overrides)
    return JobConfig(**values)


def _row_count(db_connection, table: str) -> int:
    with db_connection.cursor() as cur:
        cur.execute(f'SELECT COUNT(*) FROM "{table}";')
        return cur.fetchone()[0]


class TestAddDeleteSmoke:
    """Add/delete job against the real store."""

    def test_add_delete_round_trip(self, db_connection, clean_records_table, test_settings):
        result = run_job("add_delete", _config(), settings=test_settings, persist=False)

        assert "error" not in result
        assert result["stats"]["add"]["result_codes"] == {"success": EXPECTED_RECORDS}
        assert result["stats"]["delete"]["result_codes"] == {"success": EXPECTED_RECORDS}
        assert result["throughput_ops_per_sec"] >= MIN_THROUGHPUT_OPS_PER_SEC
        assert result["peak_rss_bytes"] is None or result["peak_rss_bytes"] > 0
        assert _row_count(db_connection, clean_records_table) == 0


class TestRateSmoke:
    """Rate jobs over records loaded with COPY."""

    def test_search_rate_finds_loaded_records(
        self, db_connection, clean_records_table, test_settings, test_dsn
    ):
        config = _config(duration_seconds=1, max_rate=50, rate_interval_seconds=1)
        loaded = _copy_into_db(test_dsn, clean_records_table, render_records(config), batch_size=10)
        assert loaded == EXPECTED_RECORDS

        result = run_job("search_rate", config, settings=test_settings, persist=False)

        search = result["stats"]["search"]
        assert search["completed"] > 0
        assert search["result_codes"] == {"success": search["completed"]}

    def test_async_modify_updates_loaded_records(
        self, db_connection, clean_records_table, test_settings, test_dsn
    ):
        config = _config(duration_seconds=1, max_rate=50, rate_interval_seconds=1, threads=1)
        _copy_into_db(test_dsn, clean_records_table, render_records(config), batch_size=10)

        result = run_job(
            "async_rate",
            config,
            AsyncRateOptions(operation="modify", connections=2, max_outstanding=4),
            settings=test_settings,
            persist=False,
        )

        modify = result["stats"]["modify"]
        assert modify["completed"] > 0
        assert modify["result_codes"] == {"success": modify["completed"]}
        assert _row_count(db_connection, clean_records_table) == EXPECTED_RECORDS
