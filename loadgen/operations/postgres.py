"""
PostgreSQL-backed record store channels.

Records live in a single table keyed by record key with the attribute
multimap stored as ``jsonb``. The sync channel goes through a psycopg pool;
the async channel uses asyncpg directly for its lower per-operation overhead.
Database errors are mapped onto result codes so drivers can always bucket an
outcome.
"""

from __future__ import annotations

import json
import re
import time
from typing import Any, Dict, Optional

import asyncpg
import psycopg
from psycopg import sql
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool, PoolTimeout

from loadgen.domain.errors import ConfigurationError, OperationError
from loadgen.operations.abstract import (
    AddRequest,
    DeleteRequest,
    ModifyRequest,
    OperationRequest,
    OperationResult,
    ResultCode,
    SearchRequest,
)
from loadgen.templating.record import Record

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_table_name(table: str) -> str:
    if not _IDENTIFIER.match(table):
        raise ConfigurationError(f"Invalid table name {table!r}")
    return table


def ensure_schema(conn: psycopg.Connection, table: str) -> None:
    """Create the record table if it does not exist."""
    validate_table_name(table)
    conn.execute(
        sql.SQL(
            "CREATE TABLE IF NOT EXISTS {} ("
            "record_key text PRIMARY KEY, "
            "attributes jsonb NOT NULL)"
        ).format(sql.Identifier(table))
    )
    conn.commit()


def _record_from_json(key: str, attributes: Dict[str, Any]) -> Record:
    record = Record(key)
    for name, values in attributes.items():
        for value in values:
            record.add(name, value)
    return record


class PostgresChannel:
    """Blocking channel executing each operation on a pooled connection."""

    def __init__(self, pool: ConnectionPool, table: str = "records", name: str = "postgres") -> None:
        self.pool = pool
        self.table = validate_table_name(table)
        self.name = name
        ident = sql.Identifier(table)
        self._insert = sql.SQL("INSERT INTO {} (record_key, attributes) VALUES (%s, %s)").format(ident)
        self._delete = sql.SQL("DELETE FROM {} WHERE record_key = %s").format(ident)
        self._update = sql.SQL(
            "UPDATE {} SET attributes = attributes || %s WHERE record_key = %s"
        ).format(ident)
        self._select = sql.SQL("SELECT attributes FROM {} WHERE record_key = %s").format(ident)

    def execute(self, request: OperationRequest) -> OperationResult:
        start = time.perf_counter()
        try:
            found = self._run(request)
        except psycopg.errors.UniqueViolation as exc:
            raise _failure(ResultCode.ENTRY_ALREADY_EXISTS, exc, start) from exc
        except PoolTimeout as exc:
            raise _failure(ResultCode.TIMEOUT, exc, start) from exc
        except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
            raise _failure(ResultCode.SERVER_DOWN, exc, start) from exc
        except psycopg.Error as exc:
            raise _failure(ResultCode.OPERATIONS_ERROR, exc, start) from exc
        except OperationError as exc:
            exc.duration_ms = _elapsed_ms(start)
            raise
        return OperationResult(ResultCode.SUCCESS, _elapsed_ms(start), found)

    def _run(self, request: OperationRequest) -> Optional[Record]:
        with self.pool.connection() as conn:
            if isinstance(request, AddRequest):
                conn.execute(self._insert, (request.key, Jsonb(request.record.to_dict())))
                return None
            if isinstance(request, DeleteRequest):
                cur = conn.execute(self._delete, (request.key,))
                _require_match(cur.rowcount, request.key)
                return None
            if isinstance(request, ModifyRequest):
                cur = conn.execute(self._update, (Jsonb(request.changes.to_dict()), request.key))
                _require_match(cur.rowcount, request.key)
                return None
            if isinstance(request, SearchRequest):
                row = conn.execute(self._select, (request.key,)).fetchone()
                _require_match(0 if row is None else 1, request.key)
                return _record_from_json(request.key, row[0])
        raise TypeError(f"Unsupported request type: {type(request).__name__}")

    def close(self) -> None:
        return None


class AsyncPostgresChannel:
    """Async channel over its own asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool, table: str = "records", name: str = "postgres") -> None:
        self.pool = pool
        self.table = validate_table_name(table)
        self.name = name

    async def execute_async(self, request: OperationRequest) -> OperationResult:
        start = time.perf_counter()
        try:
            found = await self._run(request)
        except asyncpg.exceptions.UniqueViolationError as exc:
            raise _failure(ResultCode.ENTRY_ALREADY_EXISTS, exc, start) from exc
        except (
            OSError,
            asyncpg.exceptions.ConnectionDoesNotExistError,
            asyncpg.exceptions.CannotConnectNowError,
        ) as exc:
            raise _failure(ResultCode.SERVER_DOWN, exc, start) from exc
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
            raise _failure(ResultCode.OPERATIONS_ERROR, exc, start) from exc
        except OperationError as exc:
            exc.duration_ms = _elapsed_ms(start)
            raise
        return OperationResult(ResultCode.SUCCESS, _elapsed_ms(start), found)

    async def _run(self, request: OperationRequest) -> Optional[Record]:
        table = f'"{self.table}"'
        async with self.pool.acquire() as conn:
            if isinstance(request, AddRequest):
                await conn.execute(
                    f"INSERT INTO {table} (record_key, attributes) VALUES ($1, $2::jsonb)",
                    request.key,
                    json.dumps(request.record.to_dict()),
                )
                return None
            if isinstance(request, DeleteRequest):
                status = await conn.execute(f"DELETE FROM {table} WHERE record_key = $1", request.key)
                _require_match(_affected(status), request.key)
                return None
            if isinstance(request, ModifyRequest):
                status = await conn.execute(
                    f"UPDATE {table} SET attributes = attributes || $1::jsonb WHERE record_key = $2",
                    json.dumps(request.changes.to_dict()),
                    request.key,
                )
                _require_match(_affected(status), request.key)
                return None
            if isinstance(request, SearchRequest):
                value = await conn.fetchval(
                    f"SELECT attributes FROM {table} WHERE record_key = $1", request.key
                )
                _require_match(0 if value is None else 1, request.key)
                return _record_from_json(request.key, json.loads(value))
        raise TypeError(f"Unsupported request type: {type(request).__name__}")

    async def close(self) -> None:
        await self.pool.close()


def _affected(status: str) -> int:
    """Row count from an asyncpg command status such as ``'DELETE 1'``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except ValueError:
        return 0


def _require_match(rowcount: int, key: str) -> None:
    if rowcount == 0:
        raise OperationError(ResultCode.NO_SUCH_OBJECT, key)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


def _failure(code: str, exc: Exception, start: float) -> OperationError:
    return OperationError(code, str(exc), duration_ms=_elapsed_ms(start))


__all__ = [
    "AsyncPostgresChannel",
    "PostgresChannel",
    "ensure_schema",
    "validate_table_name",
]
