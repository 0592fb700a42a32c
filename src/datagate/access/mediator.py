"""
Query mediator: permission-checked CRUD over the entity registry.

Each operation follows the same sequence:
1. Check the caller's role against the permission matrix (no I/O on denial)
2. Resolve the entity to its table spec and build one parameterized statement
3. Borrow a pooled connection, run the statement, release the connection
4. Convert rows to plain dicts; wrap driver failures in InternalStorageError

Deletion requires the ADMIN level. Holding WRITE lets a role create and edit
records but never remove them.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..api.database import convert_db_exception, database_connection
from ..api.exceptions import (
    BadRequestError,
    DataGateError,
    NotFoundError,
    PermissionDeniedError,
)
from ..config import DataGateConfig
from .entities import EntityRegistry, TableSpec
from .permissions import PermissionLevel, PermissionMatrix
from .query_builder import QueryBuilder

logger = logging.getLogger(__name__)


class GatedEngine:
    """Shared permission check and single-statement execution.

    Subclasses get ``_authorize`` (raises PermissionDeniedError before any
    statement is built) and ``_fetch`` (one statement on one pooled
    connection, driver errors converted).
    """

    def __init__(
        self,
        pool,
        matrix: PermissionMatrix,
        registry: EntityRegistry,
        config: Optional[DataGateConfig] = None,
    ):
        self.pool = pool
        self.matrix = matrix
        self.registry = registry
        self.config = config or DataGateConfig()

    def _authorize(
        self,
        role: str,
        entity_type: Any,
        level: PermissionLevel,
        action: str,
    ) -> TableSpec:
        """Check permission, then resolve the entity's table."""
        table = self.registry.resolve_table(entity_type)
        if not self.matrix.has_permission(role, table.entity_type, level):
            logger.warning(
                f"Permission denied: role={role} action={action} "
                f"entity={table.entity_type.value} level={level.value}"
            )
            raise PermissionDeniedError(role, action, table.entity_type.value)
        return table

    async def _fetch(self, sql: str, params: list[Any], operation: str) -> list[dict[str, Any]]:
        try:
            async with database_connection(self.pool, timeout=self.config.acquire_timeout) as conn:
                rows = await conn.fetch(sql, *params)
        except DataGateError as e:
            logger.error(f"{operation} failed: {e}")
            raise
        except Exception as e:
            logger.error(f"{operation} failed: {e}", exc_info=True)
            raise convert_db_exception(e, operation=operation)
        return [dict(row) for row in rows]


class QueryMediator(GatedEngine):
    """Permission-checked CRUD for every registered entity.

    Usage:
        mediator = QueryMediator(pool, PermissionMatrix.default(), EntityRegistry.default())
        row = await mediator.get_by_id("user", EntityType.POWER_DATA, 42)
        rows = await mediator.query("operator", "equipment", {"status": "active"}, limit=10)
    """

    async def get_by_id(self, role: str, entity_type: Any, record_id: Any) -> dict[str, Any]:
        """Fetch one record by primary key.

        Raises:
            PermissionDeniedError: If the role lacks READ
            NotFoundError: If no record has this id
        """
        table = self._authorize(role, entity_type, PermissionLevel.READ, "read")
        sql, params = QueryBuilder(table).build_select_by_id(record_id)
        rows = await self._fetch(sql, params, f"get {table.entity_type.value}")
        if not rows:
            raise NotFoundError(table.entity_type.value, record_id)
        return rows[0]

    async def query(
        self,
        role: str,
        entity_type: Any,
        filters: Optional[dict[str, Any]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """List records matching all filters, newest id first.

        Args:
            role: Caller role
            entity_type: Entity to query
            filters: Column -> value equality filters (None values ignored)
            limit: Page size, clamped to [1, max_query_limit]
            offset: Rows to skip (must not be negative)
        """
        table = self._authorize(role, entity_type, PermissionLevel.READ, "read")
        limit, offset = self._page(limit, offset)
        sql, params = QueryBuilder(table).build_select(filters, limit=limit, offset=offset)
        return await self._fetch(sql, params, f"query {table.entity_type.value}")

    async def create(self, role: str, entity_type: Any, data: dict[str, Any]) -> dict[str, Any]:
        """Insert a record and return it as stored, including its new id."""
        table = self._authorize(role, entity_type, PermissionLevel.WRITE, "create")
        sql, params = QueryBuilder(table).build_insert(data)
        rows = await self._fetch(sql, params, f"create {table.entity_type.value}")
        if not rows:
            raise convert_db_exception(
                RuntimeError("INSERT returned no row"),
                operation=f"create {table.entity_type.value}",
            )
        created = rows[0]
        logger.info(
            f"Created {table.entity_type.value} id={created.get(table.primary_key)} (role={role})"
        )
        return created

    async def update(
        self,
        role: str,
        entity_type: Any,
        record_id: Any,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        """Update a record and return it as stored.

        Raises:
            BadRequestError: If ``data`` is empty (raised before any I/O)
            NotFoundError: If no record has this id
        """
        table = self._authorize(role, entity_type, PermissionLevel.WRITE, "update")
        sql, params = QueryBuilder(table).build_update(record_id, data)
        rows = await self._fetch(sql, params, f"update {table.entity_type.value}")
        if not rows:
            raise NotFoundError(table.entity_type.value, record_id)
        logger.info(f"Updated {table.entity_type.value} id={record_id} (role={role})")
        return rows[0]

    async def delete(self, role: str, entity_type: Any, record_id: Any) -> bool:
        """Delete a record. Requires ADMIN on the entity."""
        table = self._authorize(role, entity_type, PermissionLevel.ADMIN, "delete")
        sql, params = QueryBuilder(table).build_delete(record_id)
        rows = await self._fetch(sql, params, f"delete {table.entity_type.value}")
        if not rows:
            raise NotFoundError(table.entity_type.value, record_id)
        logger.info(f"Deleted {table.entity_type.value} id={record_id} (role={role})")
        return True

    def _page(self, limit: Any, offset: Any) -> tuple[int, int]:
        if limit is None:
            limit = self.config.default_query_limit
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise BadRequestError(f"Invalid limit: {limit!r}", field="limit")
        if offset is None:
            offset = 0
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise BadRequestError(f"Invalid offset: {offset!r}", field="offset")
        return max(1, min(limit, self.config.max_query_limit)), offset


__all__ = ["GatedEngine", "QueryMediator"]
