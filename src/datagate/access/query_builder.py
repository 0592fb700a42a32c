"""Statement builder for generating safe SQL against allow-listed tables.

This module provides a QueryBuilder class that turns mediator and analytics
requests into single parameterized statements. It prevents SQL injection by:
- Validating every column name against the entity's allow-list
- Double-quoting validated identifiers
- Passing all values as asyncpg bind parameters ($1..$n)
- Never concatenating caller input directly into SQL

The QueryBuilder supports:
- SELECT by primary key and filtered SELECT with ORDER BY id DESC
- INSERT / UPDATE with RETURNING projections
- DELETE by primary key
- COUNT/SUM/AVG/MIN/MAX aggregates with filters
- date_trunc time-series buckets over a closed time range
"""

import json
import logging
import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from ..api.exceptions import BadRequestError
from .entities import ColumnSpec, ColumnType, TableSpec

logger = logging.getLogger(__name__)


_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


class AggregationType(str, Enum):
    COUNT = "count"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"


class TimeInterval(str, Enum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


def quote_identifier(name: str) -> str:
    """Double-quote an identifier that already passed the allow-list.

    Raises:
        BadRequestError: If the identifier has characters outside [a-z0-9_]
    """
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise BadRequestError(f"Invalid identifier: {name!r}")
    return f'"{name}"'


def parse_timestamp(value: Any, field: str = "timestamp") -> datetime:
    """Parse an ISO-8601 string (or pass through a datetime) for binding.

    Aware datetimes are normalized to naive UTC, matching the
    ``timestamp without time zone`` columns of the schema.

    Raises:
        BadRequestError: If the value is not a valid timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise BadRequestError(f"Invalid ISO-8601 timestamp: {value!r}", field=field)
    else:
        raise BadRequestError(f"Invalid timestamp: {value!r}", field=field)

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class QueryBuilder:
    """Generates safe single-statement SQL for one table.

    Every build_* method resets the parameter state and returns a tuple of
    ``(sql, params)`` ready for ``conn.fetch(sql, *params)``.

    Example:
        builder = QueryBuilder(registry.resolve_table(EntityType.EQUIPMENT))
        sql, params = builder.build_select({"status": "active"}, limit=10)
        # SELECT "id", "name", ... FROM "equipment"
        # WHERE "status" = $1 ORDER BY "id" DESC LIMIT $2 OFFSET $3
    """

    def __init__(self, table: TableSpec):
        self.table = table
        self.param_counter = 0
        self.params: list[Any] = []

    # ============================================
    # Statement builders
    # ============================================

    def build_select_by_id(self, record_id: Any) -> tuple[str, list[Any]]:
        self._reset()
        pk = self._add_param(self._bind_id(record_id))
        sql = (
            f"SELECT {self._projection()} FROM {self._table_ref()}\n"
            f"WHERE {quote_identifier(self.table.primary_key)} = {pk}"
        )
        return self._finish(sql)

    def build_select(
        self,
        filters: Optional[dict[str, Any]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[str, list[Any]]:
        self._reset()
        parts = [f"SELECT {self._projection()} FROM {self._table_ref()}"]

        where_clause = self._build_where(filters)
        if where_clause:
            parts.append(where_clause)

        parts.append(f"ORDER BY {quote_identifier(self.table.primary_key)} DESC")
        parts.append(f"LIMIT {self._add_param(limit)} OFFSET {self._add_param(offset)}")
        return self._finish("\n".join(parts))

    def build_insert(self, data: dict[str, Any]) -> tuple[str, list[Any]]:
        self._reset()
        assignments = self._writable_items(data)

        columns = ", ".join(quote_identifier(col.name) for col, _ in assignments)
        values = ", ".join(self._add_param(self._bind_value(col, v)) for col, v in assignments)
        sql = (
            f"INSERT INTO {self._table_ref()} ({columns})\n"
            f"VALUES ({values})\n"
            f"RETURNING {self._projection()}"
        )
        return self._finish(sql)

    def build_update(self, record_id: Any, data: dict[str, Any]) -> tuple[str, list[Any]]:
        self._reset()
        assignments = self._writable_items(data)

        set_items = [
            f"{quote_identifier(col.name)} = {self._add_param(self._bind_value(col, v))}"
            for col, v in assignments
        ]
        pk = self._add_param(self._bind_id(record_id))
        sql = (
            f"UPDATE {self._table_ref()}\n"
            f"SET {', '.join(set_items)}\n"
            f"WHERE {quote_identifier(self.table.primary_key)} = {pk}\n"
            f"RETURNING {self._projection()}"
        )
        return self._finish(sql)

    def build_delete(self, record_id: Any) -> tuple[str, list[Any]]:
        self._reset()
        pk_col = quote_identifier(self.table.primary_key)
        pk = self._add_param(self._bind_id(record_id))
        sql = f"DELETE FROM {self._table_ref()}\nWHERE {pk_col} = {pk}\nRETURNING {pk_col}"
        return self._finish(sql)

    def build_aggregate(
        self,
        column: str,
        agg_type: Any,
        filters: Optional[dict[str, Any]] = None,
    ) -> tuple[str, list[Any]]:
        """Build ``SELECT <AGG>(<column>) AS value`` with optional filters.

        ``count`` accepts ``*`` or any readable column; the other aggregates
        require a numeric column.
        """
        self._reset()
        aggregation = self._coerce_aggregation(agg_type)

        if aggregation == AggregationType.COUNT and column == "*":
            expr = "COUNT(*)"
        else:
            spec = self.table.require_readable(column, "aggregationColumn")
            if aggregation != AggregationType.COUNT and not spec.is_numeric:
                raise BadRequestError(
                    f"Cannot {aggregation.value} non-numeric column '{column}'",
                    field="aggregationColumn",
                )
            expr = f"{aggregation.value.upper()}({quote_identifier(spec.name)})"

        parts = [f"SELECT {expr} AS value FROM {self._table_ref()}"]
        where_clause = self._build_where(filters)
        if where_clause:
            parts.append(where_clause)
        return self._finish("\n".join(parts))

    def build_time_series(
        self,
        time_column: str,
        value_column: str,
        interval: Any,
        start: datetime,
        end: datetime,
        filters: Optional[dict[str, Any]] = None,
    ) -> tuple[str, list[Any]]:
        """Build an AVG-per-bucket query over ``[start, end]`` inclusive."""
        self._reset()
        bucket = self._coerce_interval(interval)

        time_spec = self.table.require_readable(time_column, "timeColumn")
        if time_spec.type != ColumnType.TIMESTAMP:
            raise BadRequestError(
                f"Column '{time_column}' is not a timestamp column",
                field="timeColumn",
            )
        value_spec = self.table.require_readable(value_column, "valueColumn")
        if not value_spec.is_numeric:
            raise BadRequestError(
                f"Column '{value_column}' is not a numeric column",
                field="valueColumn",
            )

        time_col = quote_identifier(time_spec.name)
        value_col = quote_identifier(value_spec.name)

        bucket_param = self._add_param(bucket.value)
        conditions = [
            f"{time_col} >= {self._add_param(start)}",
            f"{time_col} <= {self._add_param(end)}",
        ]
        conditions.extend(self._filter_conditions(filters))

        sql = (
            f"SELECT date_trunc({bucket_param}, {time_col}) AS time, "
            f"AVG({value_col}) AS value\n"
            f"FROM {self._table_ref()}\n"
            f"WHERE {' AND '.join(conditions)}\n"
            f"GROUP BY 1\n"
            f"ORDER BY 1 ASC"
        )
        return self._finish(sql)

    # ============================================
    # Clause helpers
    # ============================================

    def _projection(self) -> str:
        return ", ".join(quote_identifier(c.name) for c in self.table.readable_columns)

    def _table_ref(self) -> str:
        return quote_identifier(self.table.table)

    def _build_where(self, filters: Optional[dict[str, Any]]) -> str:
        conditions = self._filter_conditions(filters)
        if not conditions:
            return ""
        return "WHERE " + " AND ".join(conditions)

    def _filter_conditions(self, filters: Optional[dict[str, Any]]) -> list[str]:
        """Conjunctive equality conditions; None values are skipped."""
        if filters is None:
            return []
        if not isinstance(filters, dict):
            raise BadRequestError("filters must be an object", field="filters")

        conditions = []
        for name, value in filters.items():
            if value is None:
                continue
            spec = self.table.require_readable(name, "filter")
            if isinstance(value, (dict, list, tuple, set)):
                raise BadRequestError(
                    f"Filter '{name}' must be a scalar value",
                    field="filters",
                )
            placeholder = self._add_param(self._bind_value(spec, value))
            conditions.append(f"{quote_identifier(spec.name)} = {placeholder}")
        return conditions

    def _writable_items(self, data: Any) -> list[tuple[ColumnSpec, Any]]:
        if not isinstance(data, dict):
            raise BadRequestError("data must be an object", field="data")
        if not data:
            raise BadRequestError("No data provided", field="data")
        return [(self.table.require_writable(name), value) for name, value in data.items()]

    def _bind_value(self, column: ColumnSpec, value: Any) -> Any:
        """Adapt a JSON-ish value to what asyncpg expects for the column."""
        if value is None:
            return None
        if column.type == ColumnType.TIMESTAMP:
            return parse_timestamp(value, field=column.name)
        if column.type == ColumnType.JSON and not isinstance(value, str):
            return json.dumps(value)
        if column.type in (ColumnType.INTEGER, ColumnType.FLOAT) and isinstance(value, str):
            try:
                return int(value) if column.type == ColumnType.INTEGER else float(value)
            except ValueError:
                raise BadRequestError(
                    f"Column '{column.name}' expects a number, got {value!r}",
                    field=column.name,
                )
        return value

    def _bind_id(self, record_id: Any) -> Any:
        if record_id is None or isinstance(record_id, bool):
            raise BadRequestError(f"Invalid id: {record_id!r}", field="id")
        return self._bind_value(self.table.column(self.table.primary_key), record_id)

    def _coerce_aggregation(self, agg_type: Any) -> AggregationType:
        try:
            return AggregationType(agg_type)
        except ValueError:
            raise BadRequestError(
                f"Invalid aggregation type: {agg_type}",
                field="aggregationType",
            )

    def _coerce_interval(self, interval: Any) -> TimeInterval:
        try:
            return TimeInterval(interval)
        except ValueError:
            raise BadRequestError(f"Invalid interval: {interval}", field="interval")

    # ============================================
    # Parameter state
    # ============================================

    def _reset(self) -> None:
        self.param_counter = 0
        self.params = []

    def _add_param(self, value: Any) -> str:
        """Add a bind parameter and return its placeholder (e.g. "$3")."""
        self.param_counter += 1
        self.params.append(value)
        return f"${self.param_counter}"

    def _finish(self, sql: str) -> tuple[str, list[Any]]:
        logger.debug(f"Generated SQL: {sql}")
        logger.debug(f"Parameters: {self.params}")
        return sql, list(self.params)
