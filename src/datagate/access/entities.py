"""Entity registry: logical entity types mapped to physical tables.

Every EntityType has exactly one table, and every table has a column
allow-list. The allow-list is the only source of identifiers the statement
builder will ever interpolate into SQL; values always travel as bind
parameters.

Column flags:
- ``readable=False`` marks secrets (password hash, API keys). They are never
  projected and cannot be used as filters, aggregates or time-series axes.
- ``writable=False`` marks server-assigned columns (the serial ``id``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from ..api.exceptions import BadRequestError, ConfigurationError

logger = logging.getLogger(__name__)


class EntityType(str, Enum):
    """Closed set of logical resource kinds the gate exposes."""

    POWER_DATA = "power_data"
    ENVIRONMENTAL_DATA = "environmental_data"
    EQUIPMENT = "equipment"
    SETTINGS = "settings"
    USER = "user"
    AGENT_CONVERSATION = "agent_conversation"
    AGENT_MESSAGE = "agent_message"
    AGENT_TASK = "agent_task"
    AGENT_FUNCTION = "agent_function"
    AGENT_SETTING = "agent_setting"
    SIGNAL_NOTIFICATION = "signal_notification"
    ISSUE = "issue"
    COMMENT = "comment"


class ColumnType(str, Enum):
    """Storage type of an allow-listed column."""

    INTEGER = "integer"
    FLOAT = "float"
    TEXT = "text"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    JSON = "json"
    ARRAY = "array"


NUMERIC_COLUMN_TYPES = frozenset({ColumnType.INTEGER, ColumnType.FLOAT})


@dataclass(frozen=True)
class ColumnSpec:
    """One allow-listed column."""

    name: str
    type: ColumnType
    readable: bool = True
    writable: bool = True

    @property
    def is_numeric(self) -> bool:
        return self.type in NUMERIC_COLUMN_TYPES


@dataclass(frozen=True)
class TableSpec:
    """Physical table backing an entity, with its column allow-list."""

    entity_type: EntityType
    table: str
    columns: tuple[ColumnSpec, ...]
    primary_key: str = "id"
    _by_name: Mapping[str, ColumnSpec] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        by_name = {column.name: column for column in self.columns}
        if len(by_name) != len(self.columns):
            raise ConfigurationError(f"Duplicate column in table '{self.table}'")
        if self.primary_key not in by_name:
            raise ConfigurationError(
                f"Table '{self.table}' has no primary key column '{self.primary_key}'"
            )
        object.__setattr__(self, "_by_name", MappingProxyType(by_name))

    def column(self, name: str) -> Optional[ColumnSpec]:
        return self._by_name.get(name)

    @property
    def readable_columns(self) -> tuple[ColumnSpec, ...]:
        return tuple(c for c in self.columns if c.readable)

    def require_readable(self, name: Any, purpose: str = "column") -> ColumnSpec:
        """Return the readable column called ``name`` or raise BadRequest.

        Hidden columns are reported exactly like unknown ones.
        """
        spec = self._by_name.get(name) if isinstance(name, str) else None
        if spec is None or not spec.readable:
            raise BadRequestError(
                f"Unknown {purpose} '{name}' for {self.entity_type.value}",
                field=purpose,
            )
        return spec

    def require_writable(self, name: Any) -> ColumnSpec:
        """Return the writable column called ``name`` or raise BadRequest."""
        spec = self._by_name.get(name) if isinstance(name, str) else None
        if spec is None:
            raise BadRequestError(
                f"Unknown column '{name}' for {self.entity_type.value}",
                field="data",
            )
        if not spec.writable:
            raise BadRequestError(
                f"Column '{name}' of {self.entity_type.value} cannot be written",
                field="data",
            )
        return spec


def coerce_entity_type(value: Any) -> EntityType:
    """Convert a string (or EntityType) into an EntityType.

    Raises:
        BadRequestError: If the value names no entity type
    """
    if isinstance(value, EntityType):
        return value
    try:
        return EntityType(value)
    except ValueError:
        raise BadRequestError(f"Invalid entity type: {value}", field="entity_type")


class EntityRegistry:
    """Resolves entity types to their table specs.

    Construction verifies that every EntityType is mapped, so a gap in the
    mapping is found at startup rather than on the first request that
    touches the entity.
    """

    def __init__(self, tables: Iterable[TableSpec]):
        mapping: dict[EntityType, TableSpec] = {}
        for spec in tables:
            if spec.entity_type in mapping:
                raise ConfigurationError(
                    f"Entity type '{spec.entity_type.value}' is mapped twice"
                )
            mapping[spec.entity_type] = spec

        missing = [e.value for e in EntityType if e not in mapping]
        if missing:
            raise ConfigurationError(
                "Entity types without a table mapping",
                missing_keys=missing,
            )
        self._tables: Mapping[EntityType, TableSpec] = MappingProxyType(mapping)

    @classmethod
    def default(cls) -> "EntityRegistry":
        return cls(DEFAULT_TABLES)

    def resolve_table(self, entity_type: Any) -> TableSpec:
        """Look up the table spec for ``entity_type``.

        Raises:
            BadRequestError: If the value is not a mapped entity type
        """
        entity = coerce_entity_type(entity_type)
        spec = self._tables.get(entity)
        if spec is None:
            raise BadRequestError(f"Invalid entity type: {entity.value}", field="entity_type")
        return spec

    def __iter__(self):
        return iter(self._tables.values())

    def __len__(self) -> int:
        return len(self._tables)


# ============================================
# Default schema
# ============================================

_I = ColumnType.INTEGER
_F = ColumnType.FLOAT
_T = ColumnType.TEXT
_B = ColumnType.BOOLEAN
_TS = ColumnType.TIMESTAMP
_J = ColumnType.JSON
_A = ColumnType.ARRAY


def _cols(*specs: tuple) -> tuple[ColumnSpec, ...]:
    columns = [ColumnSpec("id", _I, writable=False)]
    for spec in specs:
        columns.append(ColumnSpec(*spec))
    return tuple(columns)


def _hidden(name: str, column_type: ColumnType = _T) -> tuple:
    return (name, column_type, False, True)


DEFAULT_TABLES: tuple[TableSpec, ...] = (
    TableSpec(EntityType.USER, "users", _cols(
        ("username", _T),
        _hidden("password"),
        ("role", _T),
    )),
    TableSpec(EntityType.POWER_DATA, "power_data", _cols(
        ("timestamp", _TS),
        ("main_grid_power", _F),
        ("solar_output", _F),
        ("refrigeration_load", _F),
        ("big_cold_room", _F),
        ("big_freezer", _F),
        ("smoker", _F),
        ("total_load", _F),
        ("unaccounted_load", _F),
    )),
    TableSpec(EntityType.SETTINGS, "settings", _cols(
        ("data_source", _T),
        ("scenario_profile", _T),
        ("grid_import_threshold", _F),
        ("solar_output_minimum", _F),
        ("unaccounted_power_threshold", _F),
        ("enable_email_notifications", _B),
        ("data_refresh_rate", _I),
        ("historical_data_storage", _I),
        ("grid_power_cost", _F),
        ("feed_in_tariff", _F),
        _hidden("weather_api_key"),
        _hidden("power_monitoring_api_key"),
        _hidden("notifications_api_key"),
        _hidden("solcast_api_key"),
        ("location_latitude", _F),
        ("location_longitude", _F),
        ("use_solcast_data", _B),
        ("solcast_forecast_horizon", _I),
        ("solcast_refresh_rate", _I),
        ("solcast_panel_capacity", _F),
        ("solcast_panel_tilt", _F),
        ("solcast_panel_azimuth", _F),
        ("solcast_show_probabilistic", _B),
        ("enable_pv_performance_monitoring", _B),
        ("pv_performance_threshold", _F),
    )),
    TableSpec(EntityType.ENVIRONMENTAL_DATA, "environmental_data", _cols(
        ("timestamp", _TS),
        ("weather", _T),
        ("air_temp", _F),
        ("ghi", _F),
        ("dni", _F),
        ("dhi", _F),
        ("humidity", _F),
        ("wind_speed", _F),
        ("wind_direction", _F),
        ("cloud_opacity", _F),
        ("data_source", _T),
        ("forecast_horizon", _I),
    )),
    TableSpec(EntityType.EQUIPMENT, "equipment", _cols(
        ("name", _T),
        ("type", _T),
        ("model", _T),
        ("manufacturer", _T),
        ("installed_date", _TS),
        ("nominal_power", _F),
        ("nominal_efficiency", _F),
        ("current_efficiency", _F),
        ("maintenance_interval", _I),
        ("last_maintenance", _TS),
        ("next_maintenance", _TS),
        ("status", _T),
        ("metadata", _J),
    )),
    TableSpec(EntityType.ISSUE, "issues", _cols(
        ("title", _T),
        ("description", _T),
        ("type", _T),
        ("status", _T),
        ("priority", _T),
        ("submitter_id", _I),
        ("assignee_id", _I),
        ("created_at", _TS),
        ("updated_at", _TS),
        ("closed_at", _TS),
        ("milestone", _T),
        ("labels", _A),
        ("linked_task_id", _I),
        ("votes", _I),
    )),
    TableSpec(EntityType.COMMENT, "issue_comments", _cols(
        ("issue_id", _I),
        ("user_id", _I),
        ("content", _T),
        ("created_at", _TS),
        ("updated_at", _TS),
        ("is_edited", _B),
    )),
    TableSpec(EntityType.AGENT_FUNCTION, "agent_functions", _cols(
        ("name", _T),
        ("description", _T),
        ("module", _T),
        ("parameters", _J),
        ("return_type", _T),
        ("function_code", _T),
        ("access_level", _T),
        ("tags", _A),
    )),
    TableSpec(EntityType.AGENT_CONVERSATION, "langchain_agent_conversations", _cols(
        ("user_id", _I),
        ("title", _T),
        ("agent_id", _I),
        ("created_at", _TS),
        ("updated_at", _TS),
        ("context", _J),
        ("status", _T),
    )),
    TableSpec(EntityType.AGENT_MESSAGE, "langchain_agent_messages", _cols(
        ("conversation_id", _I),
        ("role", _T),
        ("content", _T),
        ("created_at", _TS),
        ("updated_at", _TS),
        ("tokens", _I),
        ("function_call", _J),
        ("function_response", _J),
        ("metadata", _J),
    )),
    TableSpec(EntityType.AGENT_TASK, "langchain_agent_tasks", _cols(
        ("agent_id", _I),
        ("user_id", _I),
        ("result", _J),
        ("data", _J),
        ("created_at", _TS),
        ("updated_at", _TS),
        ("task", _T),
        ("status", _T),
    )),
    TableSpec(EntityType.AGENT_SETTING, "langchain_agent_settings", _cols(
        ("name", _T),
        ("value", _T),
        ("description", _T),
        ("type", _T),
        ("category", _T),
        ("updated_at", _TS),
        ("updated_by", _I),
    )),
    TableSpec(EntityType.SIGNAL_NOTIFICATION, "signal_notifications", _cols(
        ("recipient_number", _T),
        ("message", _T),
        ("type", _T),
        ("status", _T),
        ("created_at", _TS),
        ("sent_at", _TS),
        ("scheduled_for", _TS),
        ("error_message", _T),
        ("metadata", _J),
        ("triggered_by", _I),
    )),
)
