"""
FastAPI application for the data gate.

Owns the connection pool lifecycle when run standalone; embedding
applications can instead build their own DataGate and pass it to
``create_app``.

Run with:
    uvicorn src.datagate.api.app:app --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import DataGateConfig
from ..service import DataGate, create_data_gate
from .database import check_database_health, close_pool, create_pool
from .error_sanitizer import sanitize_error_message
from .exceptions import DataGateError
from .router import (
    _deps,
    create_data_gate_dependencies,
    data_gate_exception_handler,
    router,
)
from .schemas import HealthResponse

load_dotenv()

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Log original error internally, never send it to the client
    logger.error(f"Internal error: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "detail": sanitize_error_message(str(exc), "Internal server error"),
            "code": "INTERNAL_ERROR",
        },
    )


def create_app(
    gate: Optional[DataGate] = None,
    config: Optional[DataGateConfig] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        gate: Pre-built data gate; when omitted the app creates a pool from
            ``config.database_url`` at startup and closes it at shutdown
        config: Runtime settings (defaults from the environment)
    """
    config = config or DataGateConfig()
    configure_logging(config.log_level)

    if gate is not None:
        create_data_gate_dependencies(gate, config.default_role)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup: create pool and gate. Shutdown: close the pool."""
        pool = None
        if gate is None:
            logger.info("Starting data gate API...")
            pool = await create_pool(
                config.database_url,
                min_size=config.pool_min_size,
                max_size=config.pool_max_size,
                command_timeout=config.command_timeout,
            )
            create_data_gate_dependencies(create_data_gate(pool, config), config.default_role)

        yield

        if pool is not None:
            logger.info("Shutting down data gate API...")
            create_data_gate_dependencies(None, config.default_role)
            await close_pool(pool)

    app = FastAPI(
        title="Energy Dashboard Data Gate",
        description="Permission-gated data access for the dashboard agent.",
        version="1.0.0",
        lifespan=lifespan,
    )

    cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept"],
    )

    app.add_exception_handler(DataGateError, data_gate_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.include_router(router)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """Pool health check."""
        pool = _deps.gate.pool if _deps.gate else None
        database = await check_database_health(pool, timeout=config.acquire_timeout)
        return {
            "status": "healthy" if database.get("healthy") else "degraded",
            "database": database,
        }

    return app


app = create_app()
