"""Permission-gated access to application data.

Classes:
    PermissionMatrix: Role -> entity -> level grants (admin bypasses)
    EntityRegistry: Entity types mapped to allow-listed tables
    QueryMediator: Permission-checked CRUD
    AggregationEngine: count/sum/avg/min/max over one table
    TimeSeriesEngine: date_trunc bucket averages
    RawSQLGuard: Role-gated execution of ad hoc SQL
"""
from .analytics import AggregationEngine, TimeSeriesEngine, TimeSeriesPoint
from .entities import ColumnSpec, ColumnType, EntityRegistry, EntityType, TableSpec
from .mediator import QueryMediator
from .permissions import PermissionLevel, PermissionMatrix
from .query_builder import AggregationType, QueryBuilder, TimeInterval
from .sql_guard import ExecutionResult, RawSQLGuard

__all__ = [
    "AggregationEngine",
    "AggregationType",
    "ColumnSpec",
    "ColumnType",
    "EntityRegistry",
    "EntityType",
    "ExecutionResult",
    "PermissionLevel",
    "PermissionMatrix",
    "QueryBuilder",
    "QueryMediator",
    "RawSQLGuard",
    "TableSpec",
    "TimeInterval",
    "TimeSeriesEngine",
    "TimeSeriesPoint",
]
