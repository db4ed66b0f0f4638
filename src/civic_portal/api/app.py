"""FastAPI application with lifespan management."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import structlog
from arq import create_pool
from arq.connections import RedisSettings
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from civic_portal.api.middleware import (
    RequestLoggingMiddleware,
    TenantHeadersMiddleware,
)
from civic_portal.api.routes.admin import router as admin_router
from civic_portal.api.routes.config import router as config_router
from civic_portal.api.routes.reports import router as reports_router
from civic_portal.config import CounterBackend, settings
from civic_portal.errors import CrossTenantWriteError, TenantError
from civic_portal.logging_config import configure_logging
from civic_portal.storage.database import async_session, engine
from civic_portal.tenancy.incidents import (
    IncidentType,
    MismatchCounter,
    RedisWindowCounter,
    SlidingWindowCounter,
    TenantIncidentReporter,
)
from civic_portal.tenancy.override import RedisOverrideStore
from civic_portal.tenancy.registry import DomainMapCache

logger = structlog.get_logger()

CLEANUP_INTERVAL_SECONDS = 300


async def _cleanup_loop(counter: SlidingWindowCounter) -> None:
    """Periodic cleanup of expired mismatch counter entries."""
    while True:
        await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
        try:
            cleaned = await asyncio.to_thread(counter.cleanup)
            if cleaned:
                logger.debug("mismatch_counter_cleanup", keys_removed=cleaned)
        except Exception:
            logger.exception("mismatch_counter_cleanup_error")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application startup and shutdown.

    Startup:
        - Create ARQ pool, admin override store, incident reporter
          and the domain map cache.
        - Start mismatch counter cleanup task (in-process counter only).
    Shutdown:
        - Cancel cleanup task.
        - Close Redis and dispose database engine.
    """
    configure_logging(
        environment=str(settings.environment),
        log_level=settings.log_level,
    )

    # ARQ Redis pool for job enqueue; also backs the admin override store
    arq_redis = await create_pool(RedisSettings.from_dsn(settings.redis_url))
    app.state.arq_redis = arq_redis
    app.state.override_store = RedisOverrideStore(
        arq_redis, ttl_seconds=settings.tenancy_override_ttl_seconds
    )

    window = settings.tenancy_mismatch_window_seconds
    counter: MismatchCounter
    if settings.tenancy_mismatch_counter == CounterBackend.MEMORY:
        counter = SlidingWindowCounter(window)
    else:
        counter = RedisWindowCounter(arq_redis, window)

    reporter = TenantIncidentReporter(
        async_session,
        window_seconds=window,
        threshold=settings.tenancy_mismatch_alert_threshold,
        mismatch_alerts_enabled=settings.tenancy_mismatch_alerts_enabled,
        counter=counter,
    )
    app.state.incident_reporter = reporter
    app.state.domain_cache = DomainMapCache(settings.tenancy_domain_map_ttl)

    # Redis keys expire on their own; only the in-process counter needs pruning
    cleanup_task = None
    if isinstance(counter, SlidingWindowCounter):
        cleanup_task = asyncio.create_task(_cleanup_loop(counter))

    logger.info("app_started", environment=str(settings.environment))
    yield

    if cleanup_task is not None:
        cleanup_task.cancel()
    await arq_redis.aclose()
    await engine.dispose()
    logger.info("app_stopped")


app = FastAPI(
    title="Civic Portal",
    description="Multi-city citizen services backend",
    version="0.1.0",
    lifespan=lifespan,
    debug=settings.is_dev,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TenantHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allowed_methods,
    allow_headers=settings.cors_allowed_headers,
    expose_headers=settings.cors_expose_headers,
)


HEALTH_CHECK_TIMEOUT = 5.0


@app.get("/health")
async def health() -> JSONResponse:
    """Deep health check: verifies DB and Redis connectivity."""
    checks: dict[str, str] = {}
    overall = "ok"

    # DB check
    try:
        async with async_session() as session:
            await asyncio.wait_for(
                session.execute(text("SELECT 1")),
                timeout=HEALTH_CHECK_TIMEOUT,
            )
        checks["db"] = "ok"
    except (TimeoutError, OperationalError, SQLAlchemyError) as e:
        logger.warning("health_check_db_error", error=type(e).__name__)
        checks["db"] = f"error: {type(e).__name__}"
        overall = "degraded"
    except Exception as e:
        logger.error("health_check_db_unexpected", error=str(e), exc_info=True)
        checks["db"] = f"error: {type(e).__name__}"
        overall = "degraded"

    # Redis check
    try:
        arq_redis = app.state.arq_redis
        await asyncio.wait_for(
            arq_redis.ping(),
            timeout=HEALTH_CHECK_TIMEOUT,
        )
        checks["redis"] = "ok"
    except (TimeoutError, ConnectionError, OSError) as e:
        logger.warning("health_check_redis_error", error=type(e).__name__)
        checks["redis"] = f"error: {type(e).__name__}"
        overall = "degraded"
    except Exception as e:
        logger.error("health_check_redis_unexpected", error=str(e), exc_info=True)
        checks["redis"] = f"error: {type(e).__name__}"
        overall = "degraded"

    status_code = 200 if overall == "ok" else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": overall,
            "checks": checks,
            "timestamp": datetime.now(UTC).isoformat(timespec="seconds"),
        },
    )


@app.exception_handler(TenantError)
async def tenant_error_handler(request: Request, exc: TenantError) -> JSONResponse:
    """Render tenancy failures as ``{success, error, message}``.

    Cross-tenant writes are additionally recorded as incidents.
    """
    if isinstance(exc, CrossTenantWriteError):
        reporter: TenantIncidentReporter | None = getattr(
            request.app.state, "incident_reporter", None
        )
        if reporter is not None:
            context = getattr(request.state, "tenant_context", None)
            await reporter.record(
                IncidentType.CROSS_TENANT_WRITE,
                {"path": request.url.path, "detail": exc.detail},
                city_id=context.city_id if context is not None else None,
                source="tenant_scope",
                request_id=request.headers.get("X-Request-Id"),
            )

    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.code, "message": exc.message},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Catch-all handler for unhandled exceptions."""
    logger.error("unhandled_exception", exc_info=exc, path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.include_router(config_router, prefix="/api/v1")
app.include_router(reports_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")
