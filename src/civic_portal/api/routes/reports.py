"""Citizen report endpoints, scoped to the resolved city."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Annotated

import structlog
from arq.connections import ArqRedis
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from civic_portal.api.deps import (
    TenantDep,
    get_arq_redis,
    get_session,
    require_actor,
    require_tenant,
)
from civic_portal.api.schemas import (
    ReportCreateRequest,
    ReportListResponse,
    ReportResponse,
    ReportUpdateRequest,
)
from civic_portal.auth.context import ActorContext
from civic_portal.enqueue import enqueue_address_mismatch
from civic_portal.storage.orm import City, CitizenReport, RestrictionType
from civic_portal.tenancy.restrictions import RestrictionEnforcementService
from civic_portal.tenancy.scope import TenantScope

logger = structlog.get_logger()

router = APIRouter(tags=["reports"])

MODULE_KEY = "reports"

SessionDep = Annotated[AsyncSession, Depends(get_session)]
ActorDep = Annotated[ActorContext, Depends(require_actor)]
ExplicitCityDep = Annotated[City, Depends(require_tenant)]
ArqDep = Annotated[ArqRedis, Depends(get_arq_redis)]


@router.get("/reports")
async def list_reports(
    context: TenantDep,
    session: SessionDep,
    limit: int = Query(
        default=20,
        ge=1,
        le=100,
        description="Maximum number of reports to return (1-100).",
    ),
    offset: int = Query(
        default=0,
        ge=0,
        description="Number of reports to skip for pagination.",
    ),
) -> ReportListResponse:
    """List reports of the resolved city, newest first."""
    scope = TenantScope(session, context, CitizenReport)
    reports = await scope.list(limit=limit, offset=offset)
    total = await scope.count()
    return ReportListResponse(
        items=[ReportResponse.model_validate(r) for r in reports],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/reports", status_code=201)
async def create_report(
    body: ReportCreateRequest,
    city: ExplicitCityDep,
    context: TenantDep,
    actor: ActorDep,
    session: SessionDep,
    arq: ArqDep,
) -> ReportResponse:
    """Create a report in the resolved city.

    Requires an explicitly resolved city and no active
    ``block_reports`` restriction for the caller in that city.
    """
    restrictions = RestrictionEnforcementService(session, context)
    await restrictions.ensure_not_restricted(
        actor.user_id, MODULE_KEY, [RestrictionType.BLOCK_REPORTS]
    )

    scope = TenantScope(session, context, CitizenReport, actor_id=actor.user_id)
    report = await scope.add(
        CitizenReport(
            bairro_id=body.bairro_id,
            user_id=actor.user_id,
            title=body.title,
            description=body.description,
        )
    )
    await session.commit()

    if body.bairro_id is None and body.address_bairro:
        await enqueue_address_mismatch(
            redis=arq, context=context, bairro_text=body.address_bairro
        )

    logger.info(
        "report_created",
        report_id=str(report.id),
        city_slug=city.slug,
        actor_id=str(actor.user_id),
    )
    return ReportResponse.model_validate(report)


@router.patch("/reports/{report_id}")
async def update_report(
    report_id: uuid.UUID,
    body: ReportUpdateRequest,
    city: ExplicitCityDep,
    context: TenantDep,
    actor: ActorDep,
    session: SessionDep,
) -> ReportResponse:
    """Update a report of the resolved city.

    Moving a report to another city or to a bairro of another city
    is rejected with a tenant violation.
    """
    scope = TenantScope(session, context, CitizenReport, actor_id=actor.user_id)
    report = await scope.get(report_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")

    changes = body.model_dump(exclude_unset=True)
    for required in ("city_id", "title", "status"):
        if changes.get(required, ...) is None:
            del changes[required]
    for field, value in changes.items():
        setattr(report, field, value)
    report.updated_at = datetime.now(UTC)

    await scope.save(report)
    await session.commit()
    logger.info(
        "report_updated",
        report_id=str(report.id),
        city_slug=city.slug,
        fields=sorted(changes),
    )
    return ReportResponse.model_validate(report)
