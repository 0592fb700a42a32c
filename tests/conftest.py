"""Shared fixtures for data gate tests.

The pool mock mirrors how the gate uses asyncpg: ``pool.acquire()`` is
awaited (bounded by asyncio.wait_for) and ``pool.release(conn)`` is awaited
when the statement finishes.
"""
import re
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.datagate.access.entities import EntityRegistry
from src.datagate.access.permissions import PermissionMatrix
from src.datagate.config import DataGateConfig


def make_pool(rows: Optional[list] = None, side_effect: Any = None):
    """Build a mock pool whose connection returns ``rows`` from fetch()."""
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=rows if rows is not None else [], side_effect=side_effect)
    conn.fetchval = AsyncMock(return_value=1)

    pool = MagicMock()
    pool.acquire = AsyncMock(return_value=conn)
    pool.release = AsyncMock()
    pool.get_size = MagicMock(return_value=4)
    pool.get_idle_size = MagicMock(return_value=3)
    return pool, conn


class InMemoryTable:
    """Just enough of a table to answer INSERT ... RETURNING and SELECT by id."""

    def __init__(self):
        self.rows: dict[int, dict] = {}

    async def fetch(self, sql: str, *params):
        if sql.startswith("INSERT"):
            columns = re.findall(r'"(\w+)"', sql.split("VALUES")[0])[1:]
            row = {"id": len(self.rows) + 1, **dict(zip(columns, params))}
            self.rows[row["id"]] = row
            return [row]
        if sql.startswith("SELECT") and "WHERE \"id\" = $1" in sql:
            row = self.rows.get(params[0])
            return [row] if row else []
        raise AssertionError(f"Unexpected SQL: {sql}")


@pytest.fixture
def matrix():
    return PermissionMatrix.default()


@pytest.fixture
def registry():
    return EntityRegistry.default()


@pytest.fixture
def config():
    return DataGateConfig(
        database_url=None,
        acquire_timeout=1.0,
        default_query_limit=100,
        max_query_limit=500,
        default_role="anonymous",
    )


@pytest.fixture
def pool_factory():
    return make_pool


@pytest.fixture
def in_memory_table():
    return InMemoryTable()
