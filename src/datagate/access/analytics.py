"""
Aggregation and time-series engines.

Both engines are read-only views over a single entity's table and require
the READ level. Results are plain Python numbers (Decimal values from the
driver are converted) so they serialize cleanly for the calling agent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Union

from ..api.exceptions import BadRequestError
from .mediator import GatedEngine
from .permissions import PermissionLevel
from .query_builder import AggregationType, QueryBuilder, TimeInterval, parse_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeSeriesPoint:
    """One non-empty time bucket."""

    time: datetime
    value: float

    def to_dict(self) -> dict[str, Any]:
        return {"time": self.time.isoformat(), "value": self.value}


def _to_number(value: Any) -> Union[int, float]:
    if isinstance(value, Decimal):
        return float(value)
    return value


class AggregationEngine(GatedEngine):
    """Single-value aggregates (count/sum/avg/min/max) with optional filters."""

    async def get_aggregate_stats(
        self,
        role: str,
        entity_type: Any,
        column: str,
        agg_type: Union[str, AggregationType],
        filters: Optional[dict[str, Any]] = None,
    ) -> Union[int, float]:
        """Compute one aggregate over the filtered rows.

        Args:
            role: Caller role (READ required)
            entity_type: Entity whose table is aggregated
            column: Column to aggregate, or ``*`` for count
            agg_type: One of count, sum, avg, min, max
            filters: Column -> value equality filters

        Returns:
            ``int`` for count, ``float`` otherwise; ``0`` when no rows match
        """
        table = self._authorize(role, entity_type, PermissionLevel.READ, "read")
        sql, params = QueryBuilder(table).build_aggregate(column, agg_type, filters)
        rows = await self._fetch(sql, params, f"aggregate {table.entity_type.value}")

        value = rows[0].get("value") if rows else None
        if AggregationType(agg_type) == AggregationType.COUNT:
            return int(value or 0)
        if value is None:
            return 0
        return float(_to_number(value))


class TimeSeriesEngine(GatedEngine):
    """Per-bucket averages of a numeric column over a closed time range."""

    async def execute_time_series_query(
        self,
        role: str,
        entity_type: Any,
        time_column: str,
        value_column: str,
        interval: Union[str, TimeInterval],
        start: Union[str, datetime],
        end: Union[str, datetime],
        filters: Optional[dict[str, Any]] = None,
    ) -> list[TimeSeriesPoint]:
        """Average ``value_column`` per ``interval`` bucket within ``[start, end]``.

        Buckets without rows (or whose rows are all NULL) are absent; points
        are ordered by bucket, oldest first.

        Raises:
            BadRequestError: For an unknown interval, invalid timestamps,
                start after end, or a column of the wrong type
        """
        table = self._authorize(role, entity_type, PermissionLevel.READ, "read")

        start_ts = parse_timestamp(start, field="startTime")
        end_ts = parse_timestamp(end, field="endTime")
        if start_ts > end_ts:
            raise BadRequestError("startTime must not be after endTime", field="startTime")

        sql, params = QueryBuilder(table).build_time_series(
            time_column, value_column, interval, start_ts, end_ts, filters
        )
        rows = await self._fetch(sql, params, f"time series {table.entity_type.value}")

        points = [
            TimeSeriesPoint(time=row["time"], value=float(_to_number(row["value"])))
            for row in rows
            if row.get("value") is not None
        ]
        logger.debug(
            f"Time series {table.entity_type.value}.{value_column} per {interval}: "
            f"{len(points)} points"
        )
        return points


__all__ = [
    "AggregationEngine",
    "AggregationType",
    "TimeInterval",
    "TimeSeriesEngine",
    "TimeSeriesPoint",
]
