"""Case Portal Backend - FastAPI Application."""

import asyncio
import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from case_portal import __version__
from case_portal.config import settings
from case_portal.database import engine, init_db
from case_portal.deps import DbSession
from case_portal.logger import configure_logging, get_logger
from case_portal.routers import applications, sync
from case_portal.services.sync_scheduler import run_sync_scheduler
from case_portal.services.sync_trigger import SyncEnvironment

# Initialize logging early
configure_logging()
logger = get_logger(__name__)


def _init_otel_instrumentation() -> None:
    """Initialize OpenTelemetry auto-instrumentation for FastAPI, SQLAlchemy, and HTTPX."""
    if not settings.otel_exporter_otlp_endpoint:
        return

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

        FastAPIInstrumentor.instrument()
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
        # DMS and token endpoint calls go through httpx
        HTTPXClientInstrumentor().instrument()

        logger.info("OTEL instrumentation initialized", components=["fastapi", "sqlalchemy", "httpx"])
    except ImportError:  # pragma: no cover - otel extra not installed
        logger.warning("OTEL instrumentation not available", exc_info=True)


_init_otel_instrumentation()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan - shared sync collaborators and the periodic scheduler."""
    await init_db()
    sync_env = SyncEnvironment.from_settings()
    app.state.sync_env = sync_env

    stop_event = asyncio.Event()
    scheduler_task: asyncio.Task[None] | None = None
    if settings.sync_scheduler_enabled:
        scheduler_task = asyncio.create_task(run_sync_scheduler(sync_env, stop_event))
    logger.info(
        "Application started",
        version=__version__,
        dms_systems=sorted(sync_env.providers),
        scheduler=settings.sync_scheduler_enabled,
    )
    yield
    stop_event.set()
    if scheduler_task is not None:
        scheduler_task.cancel()
        with suppress(asyncio.CancelledError):
            await scheduler_task
    await sync_env.aclose()
    logger.info("Application shutting down")


app = FastAPI(
    title="Case Portal API",
    description="Immigration case portal: application workflow and DMS document sync",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def logging_middleware(request: Request, call_next: Any) -> Response:
    """Middleware to inject Request-ID and log request details."""
    request_id = request.headers.get("X-Request-ID", str(uuid4()))

    # contextvars are per task; clear so nothing leaks from a previous request
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    start_time = time.perf_counter()
    try:
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        logger.info(
            "HTTP Request",
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )

        response.headers["X-Request-ID"] = request_id
        return response
    except Exception as exc:
        duration = time.perf_counter() - start_time
        logger.exception(
            "HTTP Request Failed",
            duration_ms=round(duration * 1000, 2),
            error=str(exc),
        )
        raise


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler to ensure JSON response."""
    if settings.debug:
        detail = str(exc)
        trace = traceback.format_exc()
    else:
        detail = "An internal server error occurred. Please try again later."
        trace = None

    return JSONResponse(
        status_code=500,
        content={
            "detail": detail,
            "trace": trace,
            "request_id": structlog.contextvars.get_contextvars().get("request_id"),
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

app.include_router(applications.router)
app.include_router(sync.router)


@app.get("/health")
async def health_check(db: DbSession) -> Response:
    """Return 200 when the database answers, 503 otherwise."""
    checks: dict[str, bool] = {}
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as exc:
        logger.error("Health check: database unreachable", error=str(exc), error_type=type(exc).__name__)
        checks["database"] = False

    healthy = all(checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": checks,
            "version": __version__,
        },
    )
