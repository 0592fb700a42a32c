"""
FastAPI Router for the Data Gate.

Provides REST endpoints through which the agent runtime lists and invokes
database functions, discovers the tables it may query and submits raw SQL.
The caller's role is read from ``request.state.role``, which the upstream
auth middleware sets; a request without a role runs as the configured
default role (no permissions unless configured otherwise).
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from ..service import DataGate
from .error_sanitizer import sanitize_error_message
from .exceptions import DataGateError
from .schemas import (
    FunctionCallRequest,
    FunctionCallResponse,
    FunctionListResponse,
    SchemaResponse,
    SQLRequest,
    SQLResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/data", tags=["data"])


# =============================================================================
# Dependencies
# =============================================================================


class DataGateDependencies:
    """Container for data gate dependencies.

    Injected at application startup.
    """

    gate: Optional[DataGate] = None
    default_role: str = "anonymous"


_deps = DataGateDependencies()


def create_data_gate_dependencies(gate: Optional[DataGate], default_role: str = "anonymous") -> None:
    """Initialize router dependencies.

    Call this at application startup (and with ``None`` at shutdown).

    Args:
        gate: The data gate facade
        default_role: Role used when the request carries none
    """
    _deps.gate = gate
    _deps.default_role = default_role


def get_data_gate() -> DataGate:
    """Get the data gate dependency."""
    if not _deps.gate:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Data gate not initialized",
        )
    return _deps.gate


def get_role(request: Request) -> str:
    """Role resolved by the auth middleware, or the default role."""
    role = getattr(request.state, "role", None)
    if not role or not isinstance(role, str):
        return _deps.default_role
    return role


# =============================================================================
# Error Mapping
# =============================================================================


def error_response(exc: DataGateError) -> JSONResponse:
    """Map a gate error to its status with a sanitized body."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": sanitize_error_message(exc.message),
            "code": exc.code,
        },
    )


async def data_gate_exception_handler(request: Request, exc: DataGateError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc!r}", exc_info=exc)
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}")
    return error_response(exc)


# =============================================================================
# REST Endpoints
# =============================================================================


@router.get("/functions", response_model=FunctionListResponse)
async def list_functions(
    role: str = Depends(get_role),
    gate: DataGate = Depends(get_data_gate),
) -> FunctionListResponse:
    """List the functions the caller's role may execute (OpenAI tool format)."""
    functions = [r.to_openai_format() for r in gate.list_database_functions(role)]
    return FunctionListResponse(role=role, functions=functions, total=len(functions))


@router.post("/functions/{name}", response_model=FunctionCallResponse)
async def call_function(
    name: str,
    request: FunctionCallRequest,
    role: str = Depends(get_role),
    gate: DataGate = Depends(get_data_gate),
) -> FunctionCallResponse:
    """Execute one database function under the caller's role."""
    result = await gate.execute_database_function(name, request.params, role)
    return FunctionCallResponse(function=name, result=result)


@router.post("/sql", response_model=SQLResponse)
async def execute_sql(
    request: SQLRequest,
    role: str = Depends(get_role),
    gate: DataGate = Depends(get_data_gate),
) -> SQLResponse:
    """Validate and run one ad hoc SQL statement.

    Policy violations return 400; driver failures return 200 with
    ``success: false`` so the agent can read the error and retry.
    """
    result = await gate.execute_sql(request.query, role, request.params)
    return SQLResponse(**result.to_dict())


@router.get("/schema", response_model=SchemaResponse)
async def describe_schema(
    role: str = Depends(get_role),
    gate: DataGate = Depends(get_data_gate),
) -> SchemaResponse:
    """Tables and readable columns the caller's role may query with raw SQL."""
    return SchemaResponse(role=role, tables=gate.describe_schema(role))
