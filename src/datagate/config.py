"""
Configuration for the data access gate.

Values come from environment variables (a ``.env`` file is loaded by the
entry points via python-dotenv). Defaults are read when the module is
imported, the same way the rest of the service reads its settings.

Environment Variables:
- DATABASE_URL: PostgreSQL connection string
- DATAGATE_POOL_MIN_SIZE / DATAGATE_POOL_MAX_SIZE: asyncpg pool bounds
- DATAGATE_COMMAND_TIMEOUT: per-statement timeout handed to the pool (seconds)
- DATAGATE_ACQUIRE_TIMEOUT: max wait for a pooled connection (seconds)
- DATAGATE_DEFAULT_QUERY_LIMIT: rows returned by query operations by default
- DATAGATE_MAX_QUERY_LIMIT: hard cap on rows per query
- DATAGATE_MAX_SQL_ROWS: rows returned by one raw SQL statement
- DATAGATE_LOG_LEVEL: logging level for the entry points
- DATAGATE_DEFAULT_ROLE: role assumed when the auth layer supplied none
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class DataGateConfig:
    """Runtime settings for the data access gate."""

    database_url: Optional[str] = os.getenv("DATABASE_URL")

    # Pool sizing (the pool itself belongs to the storage client)
    pool_min_size: int = int(os.getenv("DATAGATE_POOL_MIN_SIZE", "2"))
    pool_max_size: int = int(os.getenv("DATAGATE_POOL_MAX_SIZE", "10"))
    command_timeout: float = float(os.getenv("DATAGATE_COMMAND_TIMEOUT", "60"))
    acquire_timeout: float = float(os.getenv("DATAGATE_ACQUIRE_TIMEOUT", "30"))

    # Query bounds
    default_query_limit: int = int(os.getenv("DATAGATE_DEFAULT_QUERY_LIMIT", "100"))
    max_query_limit: int = int(os.getenv("DATAGATE_MAX_QUERY_LIMIT", "1000"))
    max_sql_rows: int = int(os.getenv("DATAGATE_MAX_SQL_ROWS", "100"))

    log_level: str = os.getenv("DATAGATE_LOG_LEVEL", "INFO").upper()

    # Unknown roles hold no permissions, so this default is fail-closed
    default_role: str = os.getenv("DATAGATE_DEFAULT_ROLE", "anonymous")

    def __post_init__(self):
        if self.pool_min_size < 0 or self.pool_max_size < max(self.pool_min_size, 1):
            raise ValueError(
                f"Invalid pool bounds: min={self.pool_min_size}, max={self.pool_max_size}"
            )
        if self.default_query_limit < 1:
            raise ValueError("default_query_limit must be at least 1")
        if self.max_query_limit < self.default_query_limit:
            raise ValueError(
                f"max_query_limit ({self.max_query_limit}) must be >= "
                f"default_query_limit ({self.default_query_limit})"
            )
        if self.max_sql_rows < 1:
            raise ValueError("max_sql_rows must be at least 1")
