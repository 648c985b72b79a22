from __future__ import annotations

from contextlib import contextmanager
from types import SimpleNamespace

import psycopg
import pytest
from psycopg_pool import PoolTimeout

from loadgen.domain.errors import ConfigurationError, OperationError
from loadgen.operations.abstract import AddRequest, DeleteRequest, ResultCode, SearchRequest
from loadgen.operations.postgres import PostgresChannel, _affected, validate_table_name
from loadgen.templating.record import Record

KEY = "uid=1"


class _FakeConnection:
    def __init__(self, rowcount: int = 1, row=None, error: Exception = None) -> None:
        self.rowcount = rowcount
        self.row = row
        self.error = error
        self.executed: list = []

    def execute(self, query, params=None):
        if self.error is not None:
            raise self.error
        self.executed.append(params)
        return SimpleNamespace(rowcount=self.rowcount, fetchone=lambda: self.row)


class _FakePool:
    def __init__(self, conn: _FakeConnection = None, error: Exception = None) -> None:
        self.conn = conn
        self.error = error

    @contextmanager
    def connection(self):
        if self.error is not None:
            raise self.error
        yield self.conn


def _record() -> Record:
    record = Record(KEY)
    record.add("cn", "one")
    return record


def test_search_returns_decoded_record() -> None:
    pool = _FakePool(_FakeConnection(row=({"cn": ["one"], "mail": ["a@b", "c@d"]},)))

    result = PostgresChannel(pool, "records").execute(SearchRequest(KEY))

    assert result.succeeded
    assert result.record.values("mail") == ["a@b", "c@d"]


def test_missing_rows_map_to_no_such_object() -> None:
    channel = PostgresChannel(_FakePool(_FakeConnection(rowcount=0)), "records")

    with pytest.raises(OperationError) as excinfo:
        channel.execute(DeleteRequest(KEY))

    assert excinfo.value.result_code == ResultCode.NO_SUCH_OBJECT
    assert excinfo.value.duration_ms is not None


@pytest.mark.parametrize(
    "error,code",
    [
        (psycopg.errors.UniqueViolation("duplicate key"), ResultCode.ENTRY_ALREADY_EXISTS),
        (psycopg.OperationalError("server closed the connection"), ResultCode.SERVER_DOWN),
        (psycopg.errors.UndefinedTable("no such table"), ResultCode.OPERATIONS_ERROR),
    ],
)
def test_database_errors_map_to_result_codes(error: Exception, code: str) -> None:
    channel = PostgresChannel(_FakePool(_FakeConnection(error=error)), "records")

    with pytest.raises(OperationError) as excinfo:
        channel.execute(AddRequest(KEY, _record()))

    assert excinfo.value.result_code == code


def test_pool_timeout_maps_to_timeout() -> None:
    channel = PostgresChannel(_FakePool(error=PoolTimeout("no connection")), "records")

    with pytest.raises(OperationError) as excinfo:
        channel.execute(SearchRequest(KEY))

    assert excinfo.value.result_code == ResultCode.TIMEOUT


@pytest.mark.parametrize("table", ["records; drop table x", "1records", "rec-ords", ""])
def test_table_names_are_validated(table: str) -> None:
    with pytest.raises(ConfigurationError):
        validate_table_name(table)


@pytest.mark.parametrize("status,count", [("DELETE 1", 1), ("UPDATE 0", 0), ("", 0)])
def test_affected_rows_from_command_status(status: str, count: int) -> None:
    assert _affected(status) == count
