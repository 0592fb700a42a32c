"""
Data gate composition root.

Wires the permission matrix, entity registry, engines, raw SQL guard and
function registry around one externally owned connection pool, and exposes
the operations the agent runtime and the HTTP layer call.

Usage:
    pool = await create_pool(config.database_url)
    gate = create_data_gate(pool)

    rows = await gate.query_entities("user", "environmental_data", {"data_source": "forecast"})
    result = await gate.execute_database_function("getSettings", {}, "operator")
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Sequence, Union

from .access.analytics import AggregationEngine, TimeSeriesEngine, TimeSeriesPoint
from .access.entities import EntityRegistry
from .access.mediator import QueryMediator
from .access.permissions import PermissionLevel, PermissionMatrix
from .access.sql_guard import ExecutionResult, RawSQLGuard
from .api.exceptions import BadRequestError
from .config import DataGateConfig
from .tools.catalog import build_default_registrations
from .tools.registry import FunctionRegistration, FunctionRegistry

logger = logging.getLogger(__name__)


class DataGate:
    """Facade over every gate component.

    All components are immutable after construction and share the one pool,
    so a single instance serves concurrent requests.
    """

    def __init__(
        self,
        pool,
        matrix: PermissionMatrix,
        entities: EntityRegistry,
        config: DataGateConfig,
        functions: Optional[FunctionRegistry] = None,
    ):
        self.pool = pool
        self.matrix = matrix
        self.entities = entities
        self.config = config

        self.mediator = QueryMediator(pool, matrix, entities, config)
        self.aggregation = AggregationEngine(pool, matrix, entities, config)
        self.timeseries = TimeSeriesEngine(pool, matrix, entities, config)
        self.sql_guard = RawSQLGuard(pool, matrix, config, entities=entities)
        self.functions = functions or FunctionRegistry(
            build_default_registrations(
                self.mediator,
                self.aggregation,
                self.timeseries,
                default_limit=config.default_query_limit,
            ),
            matrix,
        )

    # Permissions

    def has_permission(self, role: str, entity_type: Any, level: Any) -> bool:
        table = self.entities.resolve_table(entity_type)
        try:
            level = PermissionLevel(level)
        except ValueError:
            raise BadRequestError(f"Invalid permission level: {level}", field="level")
        return self.matrix.has_permission(role, table.entity_type, level)

    # CRUD

    async def get_entity_by_id(self, role: str, entity_type: Any, record_id: Any) -> dict[str, Any]:
        return await self.mediator.get_by_id(role, entity_type, record_id)

    async def query_entities(
        self,
        role: str,
        entity_type: Any,
        filters: Optional[dict[str, Any]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        return await self.mediator.query(role, entity_type, filters, limit=limit, offset=offset)

    async def create_entity(self, role: str, entity_type: Any, data: dict[str, Any]) -> dict[str, Any]:
        return await self.mediator.create(role, entity_type, data)

    async def update_entity(
        self,
        role: str,
        entity_type: Any,
        record_id: Any,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        return await self.mediator.update(role, entity_type, record_id, data)

    async def delete_entity(self, role: str, entity_type: Any, record_id: Any) -> bool:
        return await self.mediator.delete(role, entity_type, record_id)

    # Analytics

    async def get_aggregate_stats(
        self,
        role: str,
        entity_type: Any,
        column: str,
        agg_type: str,
        filters: Optional[dict[str, Any]] = None,
    ) -> Union[int, float]:
        return await self.aggregation.get_aggregate_stats(role, entity_type, column, agg_type, filters)

    async def execute_time_series_query(
        self,
        role: str,
        entity_type: Any,
        time_column: str,
        value_column: str,
        interval: str,
        start: Union[str, datetime],
        end: Union[str, datetime],
        filters: Optional[dict[str, Any]] = None,
    ) -> list[TimeSeriesPoint]:
        return await self.timeseries.execute_time_series_query(
            role, entity_type, time_column, value_column, interval, start, end, filters
        )

    # Raw SQL

    async def execute_sql(
        self,
        raw_text: str,
        role: str,
        params: Optional[Sequence[Any]] = None,
    ) -> ExecutionResult:
        return await self.sql_guard.execute_sql(raw_text, role, params)

    def describe_schema(self, role: str) -> list[dict[str, Any]]:
        return self.sql_guard.describe_schema(role)

    # Function catalog

    def get_database_function(self, name: str) -> Optional[FunctionRegistration]:
        return self.functions.get_database_function(name)

    async def execute_database_function(self, name: str, params: Any, role: str) -> Any:
        return await self.functions.execute_database_function(name, params, role)

    def list_database_functions(self, role: str) -> list[FunctionRegistration]:
        return self.functions.list_functions(role)


def create_data_gate(
    pool,
    config: Optional[DataGateConfig] = None,
    matrix: Optional[PermissionMatrix] = None,
    entities: Optional[EntityRegistry] = None,
) -> DataGate:
    """Build a DataGate with the default matrix, schema and catalog."""
    config = config or DataGateConfig()
    gate = DataGate(
        pool,
        matrix or PermissionMatrix.default(),
        entities or EntityRegistry.default(),
        config,
    )
    logger.info(
        f"Data gate ready: {len(gate.entities)} entities, "
        f"{len(gate.functions)} functions, roles={sorted(gate.matrix.known_roles)}"
    )
    return gate
