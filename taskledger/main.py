"""taskledger - recurring task engine with per-client completion tracking."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from taskledger.core import db_client
from taskledger.core.config import constants
from taskledger.core.errors import EngineError, classify_error_with_response, http_status_for
from taskledger.core.logging import configure_logfire, instrument_fastapi
from taskledger.core.module_registry import ensure_registered, get_modules
from taskledger.modules.recurring import RecurringTasksModule


logger = logging.getLogger(__name__)

ensure_registered(RecurringTasksModule())


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Startup
    configure_logfire()

    await db_client.init_db()
    logger.info("Database initialized")

    yield
    # Shutdown
    await db_client.close_connection()


app = FastAPI(
    title="taskledger",
    description="Recurring tasks with per-client, per-period completion tracking",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)

# Register module routers
for module in get_modules().values():
    module_router = module.get_router()
    if module_router is not None:
        app.include_router(module_router)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Render engine failures with their status code and a user-facing message."""
    status_code = http_status_for(exc)
    response = classify_error_with_response(exc)
    log_level = logging.ERROR if status_code >= constants.HTTP_SERVER_ERROR else logging.INFO
    logger.log(
        log_level,
        "Request rejected",
        extra={"path": request.url.path, "code": response.code, "task_id": exc.task_id, "field": exc.field},
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "error": response.code,
            "message": response.message,
            "suggestion": response.suggestion,
            "detail": str(exc),
            "task_id": exc.task_id,
            "field": exc.field,
        },
    )


@app.exception_handler(db_client.DatabaseError)
async def database_error_handler(request: Request, exc: db_client.DatabaseError) -> JSONResponse:
    """Storage failures that escaped the engine."""
    response = classify_error_with_response(exc)
    logger.error("Storage failure", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(
        status_code=constants.HTTP_SERVER_ERROR,
        content={"error": response.code, "message": response.message, "suggestion": response.suggestion},
    )


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "healthy"}, status_code=constants.HTTP_OK)


@app.get("/health/database")
async def database_health_check() -> JSONResponse:
    """Check that the SQLite database answers a trivial query."""
    try:
        conn = await db_client.get_connection()
        await conn.execute("SELECT 1")
    except Exception as e:
        logger.error("database_health_check_failed", extra={"error": str(e)})
        return JSONResponse(
            content={"status": "unhealthy", "database": "unreachable"},
            status_code=constants.HTTP_SERVER_ERROR,
        )
    return JSONResponse(content={"status": "healthy", "database": "ok"}, status_code=constants.HTTP_OK)
