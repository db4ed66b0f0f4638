"""ARQ worker configuration and lifecycle hooks.

Run with::

    arq civic_portal.worker.WorkerSettings

Or in Docker::

    python -m arq civic_portal.worker.WorkerSettings
"""

from typing import Any, ClassVar

import structlog
from arq.connections import RedisSettings

from civic_portal.api.tasks import arq_log_address_mismatch
from civic_portal.config import get_settings
from civic_portal.logging_config import configure_logging

WorkerCtx = dict[str, Any]


async def startup(ctx: WorkerCtx) -> None:
    """Initialize worker resources on startup.

    Creates an async engine and session factory, storing them in the
    worker context for use by task functions. Jobs restore their own
    tenant from the payload; the worker itself is never bound to a city.
    """
    from sqlalchemy.ext.asyncio import (
        AsyncSession,
        async_sessionmaker,
        create_async_engine,
    )

    s = get_settings()
    configure_logging(
        environment=str(s.environment),
        log_level=s.log_level,
    )

    engine = create_async_engine(
        s.database_url,
        pool_size=5,
        max_overflow=10,
    )
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    ctx["engine"] = engine
    ctx["session_factory"] = session_factory

    log = structlog.get_logger()
    log.info("worker_started", redis_url=s.redis_url, max_jobs=s.worker_max_jobs)


async def shutdown(ctx: WorkerCtx) -> None:
    """Clean up worker resources on shutdown."""
    log = structlog.get_logger()

    engine = ctx.get("engine")
    if engine is not None:
        await engine.dispose()

    log.info("worker_stopped")


class WorkerSettings:
    """ARQ worker settings, consumed by the ``arq`` CLI."""

    _settings = get_settings()

    redis_settings: RedisSettings = RedisSettings.from_dsn(
        _settings.redis_url,
    )
    functions: ClassVar[list[Any]] = [arq_log_address_mismatch]
    on_startup = startup
    on_shutdown = shutdown

    max_jobs: int = _settings.worker_max_jobs
    job_timeout: int = _settings.worker_job_timeout
    max_tries: int = _settings.worker_max_tries

    keep_result: int = 3600
    poll_delay: float = 0.5
