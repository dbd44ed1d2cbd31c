"""
Cadence — FastAPI Application Entry Point

Production-ready application with:
- Async lifespan management (store factory, Redis, background runner, rescorer)
- CORS, timeout, and structured-logging middleware
- Domain-error → HTTP status mapping
- Health-check endpoints (liveness + deep readiness)
- Active-request tracking for graceful shutdown
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.config import get_settings
from app.errors import CadenceError
from app.services.compatibility_service import CompatibilityService
from app.services.rescoring_service import RescoringService
from app.services.task_runner import BackgroundTaskRunner
from app.store import build_store_factory

# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(get_settings().LOG_LEVEL.upper())
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger("cadence")

# ---------------------------------------------------------------------------
# Active request counter for graceful shutdown
# ---------------------------------------------------------------------------

_active_requests: int = 0
_active_requests_lock = asyncio.Lock()

DRAIN_TIMEOUT_SECONDS = 15


async def _increment_active() -> None:
    global _active_requests
    async with _active_requests_lock:
        _active_requests += 1


async def _decrement_active() -> None:
    global _active_requests
    async with _active_requests_lock:
        _active_requests -= 1


async def _drain_active_requests() -> None:
    """Wait until all in-flight requests complete or timeout expires."""
    deadline = time.monotonic() + DRAIN_TIMEOUT_SECONDS
    while True:
        async with _active_requests_lock:
            if _active_requests <= 0:
                break
        if time.monotonic() >= deadline:
            logger.warning(
                "drain_timeout_exceeded",
                remaining_requests=_active_requests,
            )
            break
        await asyncio.sleep(0.25)


# ---------------------------------------------------------------------------
# Redis helpers
# ---------------------------------------------------------------------------

async def _connect_redis():
    """Connect to Redis if configured.  Returns the client or ``None``."""
    import redis.asyncio as aioredis

    settings = get_settings()
    if not settings.REDIS_URL:
        logger.info("redis_skip", reason="REDIS_URL not configured")
        return None

    client = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
    )
    # Verify connectivity
    await client.ping()
    logger.info("redis_connected", url=settings.REDIS_URL)
    return client


async def _close_redis(client) -> None:
    if client is not None:
        await client.aclose()
        logger.info("redis_closed")


def _build_rescoring_service() -> RescoringService | None:
    settings = get_settings()
    if not settings.RESCORING_ENABLED:
        logger.info("rescoring_skip", reason="RESCORING_ENABLED is false")
        return None
    if not settings.GEMINI_API_KEY:
        logger.info("rescoring_skip", reason="GEMINI_API_KEY not configured")
        return None

    from app.services.gemini_service import GeminiService

    return RescoringService(GeminiService(settings), settings)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of long-lived resources."""
    settings = get_settings()

    # -- Startup --------------------------------------------------------- #
    logger.info(
        "startup_begin",
        environment=settings.ENVIRONMENT,
        log_level=settings.LOG_LEVEL,
        store_backend=settings.STORE_BACKEND,
    )

    # 1. Persistence: warm the pool when running against PostgreSQL
    store_factory = build_store_factory(settings)
    if not settings.uses_memory_store:
        from app.database import get_engine

        async with get_engine().begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("database_pool_initialised")

    # 2. Redis (optional)
    redis_client = await _connect_redis()

    # 3. Scoring, rescoring and background work
    app.state.store_factory = store_factory
    app.state.redis = redis_client
    app.state.scorer = CompatibilityService(settings)
    app.state.rescoring = _build_rescoring_service()
    app.state.runner = BackgroundTaskRunner(
        store_factory,
        max_concurrency=settings.BACKGROUND_MAX_CONCURRENCY,
        shutdown_timeout=settings.BACKGROUND_SHUTDOWN_TIMEOUT,
    )

    logger.info(
        "startup_complete",
        redis=redis_client is not None,
        rescoring=app.state.rescoring is not None,
    )

    yield

    # -- Shutdown -------------------------------------------------------- #
    logger.info("shutdown_begin")

    # 1. Drain in-flight requests
    await _drain_active_requests()

    # 2. Let background jobs finish (or cancel them)
    await app.state.runner.shutdown()

    # 3. Close Redis
    await _close_redis(redis_client)

    # 4. Dispose DB engine (closes the connection pool)
    if not settings.uses_memory_store:
        from app.database import get_engine

        await get_engine().dispose()
        logger.info("database_pool_closed")

    logger.info("shutdown_complete")


# ---------------------------------------------------------------------------
# Middleware classes
# ---------------------------------------------------------------------------

class TimeoutMiddleware(BaseHTTPMiddleware):
    """Abort requests that exceed a configurable wall-clock timeout."""

    def __init__(self, app, timeout_seconds: float = 30.0) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await asyncio.wait_for(
                call_next(request),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "request_timeout",
                method=request.method,
                path=request.url.path,
                timeout=self.timeout_seconds,
            )
            return JSONResponse(
                status_code=504,
                content={"detail": "Request timed out"},
            )


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()

        await _increment_active()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                "request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
            )
            raise
        finally:
            await _decrement_active()

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "request_handled",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        return response


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

settings = get_settings()

app = FastAPI(
    title="Cadence",
    description="Music-taste matching and recommendation service",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# -- Middleware (applied in reverse order — last added runs first) ---------- #

app.add_middleware(StructuredLoggingMiddleware)
app.add_middleware(TimeoutMiddleware, timeout_seconds=30.0)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -- Domain errors ---------------------------------------------------------- #


@app.exception_handler(CadenceError)
async def cadence_error_handler(request: Request, exc: CadenceError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "domain_error",
        error=exc.error_kind,
        detail=exc.message,
        method=request.method,
        path=request.url.path,
        status=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# -- Health-check endpoints ------------------------------------------------ #


@app.get("/health", tags=["health"])
async def health_liveness() -> dict:
    """Lightweight liveness check: always healthy while the process is
    running."""
    return {"status": "healthy"}


@app.get("/health/deep", tags=["health"])
async def health_deep(request: Request) -> dict:
    """Deep readiness check: verifies database and Redis connectivity."""
    health_settings = get_settings()
    result: dict = {
        "status": "healthy",
        "database": "connected",
        "redis": "connected",
        "background_jobs": request.app.state.runner.pending_count,
    }

    # Database
    if health_settings.uses_memory_store:
        result["database"] = "in_memory"
    else:
        try:
            from app.database import async_session_factory

            async with async_session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as exc:
            logger.error("health_db_failure", error=str(exc))
            result["database"] = f"error: {exc}"
            result["status"] = "degraded"

    # Redis
    redis = request.app.state.redis
    if redis is None:
        result["redis"] = "not_configured"
    else:
        try:
            await redis.ping()
        except Exception as exc:
            logger.error("health_redis_failure", error=str(exc))
            result["redis"] = f"error: {exc}"
            result["status"] = "degraded"

    return result


# -- API router ------------------------------------------------------------ #

from app.api.router import router as api_router  # noqa: E402

app.include_router(api_router, prefix="/api/v1")
