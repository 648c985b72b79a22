"""
Database connection factory utilities for the PostgreSQL record store.

Provides centralized management of the sync psycopg pool and async asyncpg
pools. The PoolManager singleton ensures the shared sync pool is cleaned up
on application exit.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

import atexit
import threading
from typing import Optional

import asyncpg
import psycopg
from psycopg import Connection
from psycopg_pool import ConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from loadgen.config import Settings, get_settings
from loadgen.utils.logging import get_logger

log = get_logger(__name__)


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings."""
    return (settings or get_settings()).dsn


class PoolManager:
    """
    Thread-safe singleton owning the shared synchronous connection pool.

    Handles lifecycle management with automatic cleanup via atexit hook.
    """

    _instance: Optional["PoolManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "PoolManager":
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._sync_pool = None
                instance._sync_dsn = None
                atexit.register(instance.close_all)
                cls._instance = instance
            return cls._instance

    def get_sync_pool(
        self, min_size: int = 1, max_size: int = 10, dsn: Optional[str] = None
    ) -> ConnectionPool:
        """
        Get or create the synchronous connection pool.

        Parameters
        ----------
        min_size : int
            Minimum number of idle connections to keep.
        max_size : int
            Maximum total connections in the pool.
        dsn : str, optional
            Connection string; defaults to the one derived from settings.

        Returns
        -------
        ConnectionPool
            The managed sync pool instance.
        """
        conninfo = dsn or build_dsn()
        with self._lock:
            if self._sync_pool is not None and self._sync_dsn != conninfo:
                self._sync_pool.close()
                self._sync_pool = None
            if self._sync_pool is None:
                self._sync_pool = ConnectionPool(
                    conninfo=conninfo, min_size=min_size, max_size=max_size, open=True
                )
                self._sync_dsn = conninfo
                log.debug("Sync pool opened", extra={"min_size": min_size, "max_size": max_size})
            return self._sync_pool

    def close_all(self) -> None:
        """
        Close the managed pool and release resources.

        This is called automatically on exit via atexit hook.
        """
        with self._lock:
            if self._sync_pool is not None:
                try:
                    self._sync_pool.close()
                except psycopg.Error as exc:
                    log.warning("Failed to close sync pool", extra={"error": str(exc)})
                finally:
                    self._sync_pool = None
                    self._sync_dsn = None


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None) -> Connection:
    """
    Acquire a dedicated synchronous connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection errors.
    Used for schema setup and bulk loads; operation channels use the pool.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    return psycopg.connect(dsn or build_dsn())


def get_sync_pool(min_size: int = 1, max_size: int = 10, dsn: Optional[str] = None) -> ConnectionPool:
    """Get or create the shared synchronous pool via PoolManager."""
    return PoolManager().get_sync_pool(min_size=min_size, max_size=max_size, dsn=dsn)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(
        (OSError, ConnectionError, asyncpg.exceptions.CannotConnectNowError)
    ),
    reraise=True,
)
async def create_async_pool(
    dsn: Optional[str] = None, min_size: int = 1, max_size: int = 10
) -> asyncpg.Pool:
    """
    Create an asyncpg pool with automatic retry.

    Each async channel owns its own pool so that channels behave as
    independent connections to the record store.

    Raises
    ------
    OSError
        If the server cannot be reached after all retry attempts.
    """
    return await asyncpg.create_pool(dsn or build_dsn(), min_size=min_size, max_size=max_size)


__all__ = [
    "PoolManager",
    "build_dsn",
    "create_async_pool",
    "get_sync_connection",
    "get_sync_pool",
]
