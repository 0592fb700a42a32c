#!/usr/bin/env python3
"""Database Utilities for the Data Access Gate.

This module provides the storage helpers the mediator, analytics engines
and raw SQL guard share:
    - Connection acquisition with a bounded wait
    - Driver error conversion into InternalStorageError
    - Connection pool creation, shutdown and health checks

The pool is owned by the storage client; every gate operation borrows one
connection, issues one statement and gives the connection back.

Example:
    async with database_connection(pool, timeout=30.0) as conn:
        rows = await conn.fetch('SELECT "id" FROM "equipment" WHERE "id" = $1', 7)

Author: Energy Dashboard Team
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from .exceptions import ConnectionPoolError, InternalStorageError

logger = logging.getLogger(__name__)


# ============================================
# Connection Context Manager
# ============================================

@asynccontextmanager
async def database_connection(pool, timeout: float = 30.0) -> AsyncIterator[Any]:
    """Borrow a connection from the pool for a single statement.

    Args:
        pool: asyncpg connection pool
        timeout: Seconds to wait for a free connection

    Yields:
        Database connection

    Raises:
        ConnectionPoolError: If the pool is missing or no connection
            became available in time
    """
    if pool is None:
        raise ConnectionPoolError("Database connection pool is not initialized")

    try:
        conn = await asyncio.wait_for(pool.acquire(), timeout=timeout)
    except asyncio.TimeoutError:
        raise ConnectionPoolError(
            "Timeout acquiring database connection",
            details={"timeout_seconds": timeout},
        )
    except Exception as e:
        raise ConnectionPoolError(
            "Failed to acquire database connection",
            cause=e,
        )

    try:
        yield conn
    finally:
        await pool.release(conn)


# ============================================
# Error Conversion
# ============================================

# SQLSTATE classes worth surfacing to the agent as a hint; the driver text is not
_SQLSTATE_REASONS = {
    "23505": "unique_violation",
    "23503": "foreign_key_violation",
    "23502": "not_null_violation",
    "23514": "check_violation",
    "22P02": "invalid_value",
    "22007": "invalid_datetime",
    "42703": "undefined_column",
    "57014": "query_canceled",
}


def convert_db_exception(e: Exception, operation: Optional[str] = None) -> InternalStorageError:
    """Convert a driver exception into an InternalStorageError.

    The returned error carries a generic message plus a coarse ``reason``
    derived from the SQLSTATE; the driver message stays in ``cause``.
    """
    if isinstance(e, InternalStorageError):
        return e

    details: dict[str, Any] = {}
    sqlstate = getattr(e, "sqlstate", None)
    if sqlstate in _SQLSTATE_REASONS:
        details["reason"] = _SQLSTATE_REASONS[sqlstate]
    else:
        error_str = str(e).lower()
        if "unique" in error_str or "duplicate" in error_str:
            details["reason"] = "unique_violation"
        elif "foreign key" in error_str:
            details["reason"] = "foreign_key_violation"
        elif "not null" in error_str or "null value" in error_str:
            details["reason"] = "not_null_violation"
        elif "timeout" in error_str or "timed out" in error_str:
            details["reason"] = "query_canceled"

    return InternalStorageError(
        "Database operation failed",
        operation=operation,
        details=details,
        cause=e,
    )


# ============================================
# Connection Pool Helpers
# ============================================

async def create_pool(
    database_url: str,
    min_size: int = 2,
    max_size: int = 10,
    command_timeout: float = 60.0,
    **kwargs,
):
    """Create a database connection pool with error handling.

    Args:
        database_url: PostgreSQL connection string
        min_size: Minimum pool connections
        max_size: Maximum pool connections
        command_timeout: Default statement timeout in seconds
        **kwargs: Additional asyncpg.create_pool arguments

    Returns:
        asyncpg.Pool instance

    Raises:
        ConnectionPoolError: If pool creation fails
    """
    import asyncpg

    try:
        pool = await asyncpg.create_pool(
            database_url,
            min_size=min_size,
            max_size=max_size,
            command_timeout=command_timeout,
            **kwargs,
        )
        logger.info(f"Database pool created (min={min_size}, max={max_size})")
        return pool

    except Exception as e:
        raise ConnectionPoolError(
            "Failed to create database pool",
            cause=e,
        )


async def close_pool(pool, timeout: float = 10.0):
    """Close database pool gracefully.

    Args:
        pool: asyncpg pool to close
        timeout: Maximum time to wait for connections to close
    """
    if pool is None:
        return

    try:
        await asyncio.wait_for(pool.close(), timeout=timeout)
        logger.info("Database pool closed")
    except asyncio.TimeoutError:
        logger.warning(f"Pool close timed out after {timeout}s, terminating")
        pool.terminate()


# ============================================
# Health Check
# ============================================

async def check_database_health(pool, timeout: float = 5.0) -> dict[str, Any]:
    """Check database connection health.

    Args:
        pool: asyncpg connection pool
        timeout: Seconds to wait for a free connection

    Returns:
        Dict with health status information
    """
    if pool is None:
        return {
            "healthy": False,
            "error": "Pool not initialized",
        }

    try:
        async with database_connection(pool, timeout=timeout) as conn:
            result = await conn.fetchval("SELECT 1")
        pool_size = pool.get_size()
        pool_free = pool.get_idle_size()

        return {
            "healthy": result == 1,
            "pool_size": pool_size,
            "pool_free": pool_free,
            "pool_used": pool_size - pool_free,
        }

    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return {
            "healthy": False,
            "error": type(e).__name__,
        }


# ============================================
# Exports
# ============================================

__all__ = [
    "database_connection",
    "convert_db_exception",
    "create_pool",
    "close_pool",
    "check_database_health",
]
