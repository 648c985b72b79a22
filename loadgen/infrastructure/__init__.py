"""
Infrastructure package for the load job runtime.

Centralizes database connectivity concerns (sync/async factories, pooling).
Keep this layer focused on I/O and resource management, decoupled from
driver/orchestrator logic.
"""

from loadgen.infrastructure.db_factory import (
    PoolManager,
    build_dsn,
    create_async_pool,
    get_sync_connection,
    get_sync_pool,
)

__all__ = [
    "PoolManager",
    "build_dsn",
    "create_async_pool",
    "get_sync_connection",
    "get_sync_pool",
]
