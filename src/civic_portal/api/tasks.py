"""Background tasks for async processing."""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from civic_portal.storage.address_mismatch import AddressMismatchRepository
from civic_portal.tenancy.jobs import TenantJobPayload, restore_tenant_context


async def log_address_mismatch(
    payload: TenantJobPayload,
    bairro_text: str,
    provider: str,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Aggregate one unmatched bairro name in the job's city.

    Tenant restoration failures propagate so the job is marked failed;
    aggregation errors are logged and dropped, the counter is best effort.
    """
    log = structlog.get_logger().bind(
        city_id=payload.city_id,
        trace_id=payload.trace_id,
        module_key=payload.module_key,
    )

    async with session_factory() as session:
        async with restore_tenant_context(session, payload) as context:
            try:
                agg = await AddressMismatchRepository(session, context).record(
                    bairro_text, provider=provider
                )
                await session.commit()
            except Exception as exc:
                await session.rollback()
                log.warning(
                    "address_mismatch_log_failed",
                    bairro_text=bairro_text,
                    error=str(exc),
                )
                return

    log.info(
        "address_mismatch_logged",
        bairro_text_key=agg.bairro_text_key,
        count=agg.count,
    )


async def arq_log_address_mismatch(
    ctx: dict[str, Any],
    tenant: dict[str, Any],
    bairro_text: str,
    provider: str = "viacep",
) -> None:
    """ARQ task wrapper for :func:`log_address_mismatch`."""
    await log_address_mismatch(
        TenantJobPayload.from_dict(tenant),
        bairro_text,
        provider,
        ctx["session_factory"],
    )
