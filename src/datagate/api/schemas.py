"""
Pydantic schemas for the data gate API.

Defines request/response models for function dispatch and raw SQL.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Constants
# =============================================================================

MAX_SQL_LENGTH = 20000


# =============================================================================
# Function Schemas
# =============================================================================


class FunctionCallRequest(BaseModel):
    """Parameters for one database function call."""

    params: dict[str, Any] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "params": {"filters": {"status": "active"}, "limit": 24},
            }
        }


class FunctionCallResponse(BaseModel):
    """Result of a database function call."""

    function: str
    result: Any = None


class FunctionListResponse(BaseModel):
    """Functions the caller's role may execute, in OpenAI tool format."""

    role: str
    functions: list[dict[str, Any]]
    total: int


# =============================================================================
# Raw SQL Schemas
# =============================================================================


class SQLRequest(BaseModel):
    """Ad hoc SQL submitted by the agent."""

    query: str = Field(..., min_length=1, max_length=MAX_SQL_LENGTH)
    params: list[Any] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "query": "SELECT AVG(solar_output) AS avg_solar FROM power_data WHERE solar_output > $1",
                "params": [0],
            }
        }


class ColumnInfo(BaseModel):
    name: str
    type: str


class SQLResponse(BaseModel):
    """Outcome of a raw SQL execution.

    Serialized with the agent-facing names ``rowCount`` and ``duration``
    (milliseconds).
    """

    rows: list[dict[str, Any]] = Field(default_factory=list)
    command: str = ""
    row_count: int = Field(default=0, alias="rowCount")
    duration_ms: float = Field(default=0.0, alias="duration")
    success: bool = True
    error: Optional[str] = None
    columns: Optional[list[ColumnInfo]] = None
    truncated: bool = False

    class Config:
        populate_by_name = True


class TableInfo(BaseModel):
    """One table the caller may query, with its readable columns."""

    entity: str
    table: str
    columns: list[ColumnInfo]


class SchemaResponse(BaseModel):
    """Tables visible to the caller's role for raw SQL."""

    role: str
    tables: list[TableInfo]


# =============================================================================
# Health Schemas
# =============================================================================


class HealthResponse(BaseModel):
    status: str
    database: dict[str, Any]
