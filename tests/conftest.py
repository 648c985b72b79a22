"""
Pytest configuration for the load job runtime.

Provides fixtures for:
- Settings override for tests
- Database connection management (integration tests skip without Postgres)
- A manually advanced clock for timing-sensitive unit tests
"""

from __future__ import annotations

import os
from typing import Generator

import psycopg
import pytest

from loadgen.config import Settings

TEST_TABLE = "loadgen_test_records"


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> bool:
        self.now += seconds
        return False


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "loadgen"),
        db_table=TEST_TABLE,
        log_level="DEBUG",
        drain_timeout_seconds=1.0,
        stop_poll_seconds=0.01,
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return test_settings.dsn


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped database connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="function")
def clean_records_table(db_connection: psycopg.Connection):
    """
    Drop the test record table before and after each test function.

    Channels and jobs recreate it on first use.
    """
    with db_connection.cursor() as cur:
        cur.execute(f'DROP TABLE IF EXISTS "{TEST_TABLE}";')
    db_connection.commit()
    yield TEST_TABLE
    with db_connection.cursor() as cur:
        cur.execute(f'DROP TABLE IF EXISTS "{TEST_TABLE}";')
    db_connection.commit()
