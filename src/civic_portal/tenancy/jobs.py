"""Tenant hand-off across the queue boundary.

The request binding does not travel with a job. Callers capture the
city at enqueue time (``TenantJobPayload.capture``) and the job body
restores it explicitly with ``restore_tenant_context``.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from civic_portal.errors import TenantJobContextError
from civic_portal.logging_config import (
    bind_tenant_log_context,
    clear_tenant_log_context,
)
from civic_portal.tenancy.context import (
    ExecutionOrigin,
    ResolutionSource,
    TenantContext,
    tenant_key,
)
from civic_portal.tenancy.registry import TenantRegistry

logger = structlog.get_logger()


@dataclass(frozen=True)
class TenantJobPayload:
    """Serializable tenant identity carried by a queued job."""

    city_id: str | None
    module_key: str | None = None
    trace_id: str | None = None

    @classmethod
    def capture(
        cls,
        context: TenantContext,
        *,
        module_key: str | None = None,
        trace_id: str | None = None,
    ) -> TenantJobPayload:
        """Snapshot the bound city for a job about to be enqueued.

        Raises:
            TenantJobContextError: no tenant bound.
        """
        if context.city_id is None:
            raise TenantJobContextError(
                "Cannot enqueue tenant-aware job without tenant."
            )
        return cls(
            city_id=str(context.city_id),
            module_key=module_key,
            trace_id=trace_id or str(uuid.uuid4()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "city_id": self.city_id,
            "module_key": self.module_key,
            "trace_id": self.trace_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TenantJobPayload:
        return cls(
            city_id=data.get("city_id"),
            module_key=data.get("module_key"),
            trace_id=data.get("trace_id"),
        )


@asynccontextmanager
async def restore_tenant_context(
    session: AsyncSession,
    payload: TenantJobPayload,
) -> AsyncIterator[TenantContext]:
    """Bind a fresh queue-origin context for the job body.

    The context is cleared on exit, so consecutive jobs in the same
    worker never see each other's city.

    Raises:
        TenantJobContextError: missing or unknown city id.
    """
    log_fields = {
        "module_key": payload.module_key,
        "trace_id": payload.trace_id,
    }
    if not payload.city_id:
        logger.error("tenant_job_missing_city_id", **log_fields)
        raise TenantJobContextError("Tenant-aware job requires city_id.")

    city = await TenantRegistry(session).get_active_by_id(payload.city_id)
    if city is None:
        logger.error("tenant_job_city_not_found", city_id=payload.city_id, **log_fields)
        raise TenantJobContextError(
            f"Tenant city not found for queued job: {payload.city_id}"
        )

    context = TenantContext(origin=ExecutionOrigin.QUEUE)
    context.bind(city, ResolutionSource.QUEUE_JOB)
    bind_tenant_log_context(
        city_id=str(city.id),
        slug=city.slug,
        tenant_key=tenant_key(city),
        source=str(ResolutionSource.QUEUE_JOB),
    )
    try:
        yield context
    finally:
        context.clear()
        clear_tenant_log_context()
