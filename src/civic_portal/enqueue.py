"""Enqueue helpers for submitting tenant-aware jobs to ARQ."""

from __future__ import annotations

import structlog
from arq.connections import ArqRedis

from civic_portal.tenancy.context import TenantContext
from civic_portal.tenancy.jobs import TenantJobPayload

ADDRESS_MISMATCH_JOB = "arq_log_address_mismatch"


async def enqueue_address_mismatch(
    *,
    redis: ArqRedis,
    context: TenantContext,
    bairro_text: str,
    provider: str = "viacep",
    trace_id: str | None = None,
) -> str | None:
    """Queue an address/bairro mismatch for aggregation in the bound city.

    The tenant is captured here, at enqueue time; the worker never
    sees the request binding.

    Args:
        redis: ARQ Redis connection pool.
        context: Bound request context.
        bairro_text: Neighbourhood name returned by the address lookup.
        provider: Address lookup provider name.
        trace_id: Correlation id; generated when omitted.

    Returns:
        ARQ job id, or None when ARQ deduplicated the job.

    Raises:
        TenantJobContextError: context has no tenant bound.
    """
    payload = TenantJobPayload.capture(
        context, module_key="reports", trace_id=trace_id
    )
    log = structlog.get_logger().bind(
        city_id=payload.city_id, trace_id=payload.trace_id
    )

    arq_job = await redis.enqueue_job(
        ADDRESS_MISMATCH_JOB,
        payload.to_dict(),
        bairro_text,
        provider,
    )

    log.info(
        "job_enqueued",
        job_name=ADDRESS_MISMATCH_JOB,
        arq_job_id=arq_job.job_id if arq_job else None,
    )
    return arq_job.job_id if arq_job else None
