"""
Default database function catalog.

Builds the registrations the agent sees as tools: paged queries, lookups by
id, aggregates and time series over the monitoring tables, plus the
equipment, settings, task and notification operations the dashboard agent
uses day to day.

Every executor delegates to the mediator or an analytics engine with the
caller's role, so storage access is permission-checked a second time below
the dispatcher.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from ..access.analytics import AggregationEngine, TimeSeriesEngine
from ..access.entities import EntityType
from ..access.mediator import QueryMediator
from ..access.permissions import PermissionLevel
from ..api.exceptions import BadRequestError, NotFoundError
from .registry import (
    DatabaseFunction,
    FunctionParameter,
    FunctionRegistration,
    ParameterType,
)

logger = logging.getLogger(__name__)

TIME_COLUMN = "timestamp"

_READ = PermissionLevel.READ
_WRITE = PermissionLevel.WRITE


def _int_param(value: Any, name: str) -> int:
    """Accept JSON numbers (including 10.0) for integer parameters."""
    if isinstance(value, bool):
        raise BadRequestError(f"Parameter '{name}' must be an integer", field=name)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    raise BadRequestError(f"Parameter '{name}' must be an integer", field=name)


# ============================================
# Shared parameter definitions
# ============================================

def _filters_param() -> FunctionParameter:
    return FunctionParameter(
        "filters", ParameterType.OBJECT,
        "Column/value pairs that must all match", default={},
    )


def _paging_params(default_limit: int) -> tuple[FunctionParameter, ...]:
    return (
        _filters_param(),
        FunctionParameter(
            "limit", ParameterType.NUMBER,
            "Maximum number of records to return", default=default_limit,
        ),
        FunctionParameter(
            "offset", ParameterType.NUMBER,
            "Number of records to skip", default=0,
        ),
    )


_ID_PARAM = FunctionParameter("id", ParameterType.NUMBER, "Record id", required=True)


class CatalogBuilder:
    """Assembles the default registrations around the three engines."""

    def __init__(
        self,
        mediator: QueryMediator,
        aggregation: AggregationEngine,
        timeseries: TimeSeriesEngine,
        default_limit: int = 100,
    ):
        self.mediator = mediator
        self.aggregation = aggregation
        self.timeseries = timeseries
        self.default_limit = default_limit

    # ============================================
    # Generic registration factories
    # ============================================

    def query_function(
        self, name: DatabaseFunction, entity: EntityType, description: str
    ) -> FunctionRegistration:
        async def execute(params: dict[str, Any], role: str) -> list[dict[str, Any]]:
            return await self.mediator.query(
                role,
                entity,
                params["filters"],
                limit=_int_param(params["limit"], "limit"),
                offset=_int_param(params["offset"], "offset"),
            )

        return FunctionRegistration(
            name=name,
            description=description,
            required_entity_type=entity,
            required_permission_level=_READ,
            execute=execute,
            parameters=_paging_params(self.default_limit),
        )

    def by_id_function(
        self, name: DatabaseFunction, entity: EntityType, description: str
    ) -> FunctionRegistration:
        async def execute(params: dict[str, Any], role: str) -> dict[str, Any]:
            return await self.mediator.get_by_id(role, entity, params["id"])

        return FunctionRegistration(
            name=name,
            description=description,
            required_entity_type=entity,
            required_permission_level=_READ,
            execute=execute,
            parameters=(_ID_PARAM,),
        )

    def stats_function(
        self, name: DatabaseFunction, entity: EntityType, description: str
    ) -> FunctionRegistration:
        async def execute(params: dict[str, Any], role: str) -> Any:
            return await self.aggregation.get_aggregate_stats(
                role,
                entity,
                params["aggregationColumn"],
                params["aggregationType"],
                params["filters"],
            )

        return FunctionRegistration(
            name=name,
            description=description,
            required_entity_type=entity,
            required_permission_level=_READ,
            execute=execute,
            parameters=(
                FunctionParameter(
                    "aggregationColumn", ParameterType.STRING,
                    "Column to aggregate ('*' is allowed for count)", required=True,
                ),
                FunctionParameter(
                    "aggregationType", ParameterType.STRING,
                    "One of: count, sum, avg, min, max", required=True,
                ),
                _filters_param(),
            ),
        )

    def time_series_function(
        self, name: DatabaseFunction, entity: EntityType, description: str
    ) -> FunctionRegistration:
        async def execute(params: dict[str, Any], role: str) -> list[dict[str, Any]]:
            points = await self.timeseries.execute_time_series_query(
                role,
                entity,
                TIME_COLUMN,
                params["valueColumn"],
                params["interval"],
                params["startTime"],
                params["endTime"],
                params["filters"],
            )
            return [point.to_dict() for point in points]

        return FunctionRegistration(
            name=name,
            description=description,
            required_entity_type=entity,
            required_permission_level=_READ,
            execute=execute,
            parameters=(
                FunctionParameter(
                    "valueColumn", ParameterType.STRING,
                    "Numeric column to average per bucket", required=True,
                ),
                FunctionParameter(
                    "interval", ParameterType.STRING,
                    "Bucket size: hour, day, week or month", required=True,
                ),
                FunctionParameter(
                    "startTime", ParameterType.STRING,
                    "Range start (ISO-8601, inclusive)", required=True,
                ),
                FunctionParameter(
                    "endTime", ParameterType.STRING,
                    "Range end (ISO-8601, inclusive)", required=True,
                ),
                _filters_param(),
            ),
        )

    # ============================================
    # Equipment
    # ============================================

    def update_equipment(self) -> FunctionRegistration:
        async def execute(params: dict[str, Any], role: str) -> dict[str, Any]:
            return await self.mediator.update(
                role, EntityType.EQUIPMENT, params["id"], params["data"]
            )

        return FunctionRegistration(
            name=DatabaseFunction.UPDATE_EQUIPMENT,
            description="Update an equipment record",
            required_entity_type=EntityType.EQUIPMENT,
            required_permission_level=_WRITE,
            execute=execute,
            parameters=(
                _ID_PARAM,
                FunctionParameter(
                    "data", ParameterType.OBJECT, "Fields to update", required=True,
                ),
            ),
        )

    def create_equipment(self) -> FunctionRegistration:
        async def execute(params: dict[str, Any], role: str) -> dict[str, Any]:
            return await self.mediator.create(role, EntityType.EQUIPMENT, params["data"])

        return FunctionRegistration(
            name=DatabaseFunction.CREATE_EQUIPMENT,
            description="Create a new equipment record",
            required_entity_type=EntityType.EQUIPMENT,
            required_permission_level=_WRITE,
            execute=execute,
            parameters=(
                FunctionParameter(
                    "data", ParameterType.OBJECT, "Equipment fields", required=True,
                ),
            ),
        )

    # ============================================
    # Settings (single row)
    # ============================================

    async def _current_settings(self, role: str) -> Optional[dict[str, Any]]:
        rows = await self.mediator.query(role, EntityType.SETTINGS, {}, limit=1, offset=0)
        return rows[0] if rows else None

    def get_settings(self) -> FunctionRegistration:
        async def execute(params: dict[str, Any], role: str) -> Optional[dict[str, Any]]:
            return await self._current_settings(role)

        return FunctionRegistration(
            name=DatabaseFunction.GET_SETTINGS,
            description="Get the system settings",
            required_entity_type=EntityType.SETTINGS,
            required_permission_level=_READ,
            execute=execute,
        )

    def update_settings(self) -> FunctionRegistration:
        async def execute(params: dict[str, Any], role: str) -> dict[str, Any]:
            current = await self._current_settings(role)
            if current is None:
                raise NotFoundError("Settings")
            return await self.mediator.update(
                role, EntityType.SETTINGS, current["id"], params["data"]
            )

        return FunctionRegistration(
            name=DatabaseFunction.UPDATE_SETTINGS,
            description="Update the system settings",
            required_entity_type=EntityType.SETTINGS,
            required_permission_level=_WRITE,
            execute=execute,
            parameters=(
                FunctionParameter(
                    "data", ParameterType.OBJECT, "Settings fields to update", required=True,
                ),
            ),
        )

    # ============================================
    # Agent tasks
    # ============================================

    def create_task(self) -> FunctionRegistration:
        async def execute(params: dict[str, Any], role: str) -> dict[str, Any]:
            return await self.mediator.create(role, EntityType.AGENT_TASK, params["data"])

        return FunctionRegistration(
            name=DatabaseFunction.CREATE_TASK,
            description="Create a new agent task",
            required_entity_type=EntityType.AGENT_TASK,
            required_permission_level=_WRITE,
            execute=execute,
            parameters=(
                FunctionParameter(
                    "data", ParameterType.OBJECT, "Task fields", required=True,
                ),
            ),
        )

    def update_task_status(self) -> FunctionRegistration:
        async def execute(params: dict[str, Any], role: str) -> dict[str, Any]:
            data: dict[str, Any] = {
                "status": params["status"],
                "updated_at": datetime.utcnow(),
            }
            if params.get("result") is not None:
                data["result"] = params["result"]
            return await self.mediator.update(role, EntityType.AGENT_TASK, params["id"], data)

        return FunctionRegistration(
            name=DatabaseFunction.UPDATE_TASK_STATUS,
            description="Update the status (and optionally the result) of an agent task",
            required_entity_type=EntityType.AGENT_TASK,
            required_permission_level=_WRITE,
            execute=execute,
            parameters=(
                FunctionParameter("id", ParameterType.NUMBER, "Task id", required=True),
                FunctionParameter("status", ParameterType.STRING, "New status", required=True),
                FunctionParameter("result", ParameterType.OBJECT, "Task result"),
            ),
        )

    # ============================================
    # Notifications
    # ============================================

    def create_notification(self) -> FunctionRegistration:
        async def execute(params: dict[str, Any], role: str) -> dict[str, Any]:
            return await self.mediator.create(
                role,
                EntityType.SIGNAL_NOTIFICATION,
                {
                    "recipient_number": params["recipient"],
                    "message": params["message"],
                    "type": params["type"],
                    "status": "pending",
                },
            )

        return FunctionRegistration(
            name=DatabaseFunction.CREATE_NOTIFICATION,
            description="Queue a notification for delivery",
            required_entity_type=EntityType.SIGNAL_NOTIFICATION,
            required_permission_level=_WRITE,
            execute=execute,
            parameters=(
                FunctionParameter(
                    "recipient", ParameterType.STRING, "Recipient phone number", required=True,
                ),
                FunctionParameter(
                    "message", ParameterType.STRING, "Notification text", required=True,
                ),
                FunctionParameter(
                    "type", ParameterType.STRING, "Notification type", default="info",
                ),
            ),
        )

    # ============================================
    # Full catalog
    # ============================================

    def build(self) -> list[FunctionRegistration]:
        F = DatabaseFunction
        return [
            self.query_function(
                F.QUERY_POWER_DATA, EntityType.POWER_DATA,
                "Query power data with optional filters",
            ),
            self.by_id_function(
                F.GET_POWER_DATA_BY_ID, EntityType.POWER_DATA,
                "Get a power data record by id",
            ),
            self.stats_function(
                F.GET_POWER_DATA_STATS, EntityType.POWER_DATA,
                "Get aggregate statistics for power data",
            ),
            self.time_series_function(
                F.GET_POWER_DATA_TIME_SERIES, EntityType.POWER_DATA,
                "Get power data averaged per time bucket",
            ),
            self.query_function(
                F.QUERY_ENVIRONMENTAL_DATA, EntityType.ENVIRONMENTAL_DATA,
                "Query environmental data with optional filters",
            ),
            self.by_id_function(
                F.GET_ENVIRONMENTAL_DATA_BY_ID, EntityType.ENVIRONMENTAL_DATA,
                "Get an environmental data record by id",
            ),
            self.stats_function(
                F.GET_ENVIRONMENTAL_DATA_STATS, EntityType.ENVIRONMENTAL_DATA,
                "Get aggregate statistics for environmental data",
            ),
            self.time_series_function(
                F.GET_ENVIRONMENTAL_DATA_TIME_SERIES, EntityType.ENVIRONMENTAL_DATA,
                "Get environmental data averaged per time bucket",
            ),
            self.query_function(
                F.QUERY_EQUIPMENT, EntityType.EQUIPMENT,
                "Query equipment with optional filters",
            ),
            self.by_id_function(
                F.GET_EQUIPMENT_BY_ID, EntityType.EQUIPMENT,
                "Get an equipment record by id",
            ),
            self.update_equipment(),
            self.create_equipment(),
            self.get_settings(),
            self.update_settings(),
            self.query_function(
                F.GET_TASKS, EntityType.AGENT_TASK,
                "Get agent tasks with optional filters",
            ),
            self.by_id_function(
                F.GET_TASK_BY_ID, EntityType.AGENT_TASK,
                "Get an agent task by id",
            ),
            self.create_task(),
            self.update_task_status(),
            self.create_notification(),
            self.query_function(
                F.GET_NOTIFICATIONS, EntityType.SIGNAL_NOTIFICATION,
                "Get notifications with optional filters",
            ),
        ]


def build_default_registrations(
    mediator: QueryMediator,
    aggregation: AggregationEngine,
    timeseries: TimeSeriesEngine,
    default_limit: int = 100,
) -> list[FunctionRegistration]:
    """Build the default catalog bound to the given engines."""
    return CatalogBuilder(mediator, aggregation, timeseries, default_limit).build()


__all__ = ["CatalogBuilder", "build_default_registrations"]
