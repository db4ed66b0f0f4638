"""Admin panel tenant endpoint."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from civic_portal.api.deps import TenantDep, get_override_store, require_actor
from civic_portal.api.schemas import AdminTenantResponse
from civic_portal.auth.context import ActorContext
from civic_portal.tenancy.override import OverrideStore

router = APIRouter(prefix="/admin", tags=["admin"])

ActorDep = Annotated[ActorContext, Depends(require_actor)]
StoreDep = Annotated[OverrideStore, Depends(get_override_store)]


@router.get("/tenant")
async def get_admin_tenant(
    actor: ActorDep,
    context: TenantDep,
    store: StoreDep,
) -> AdminTenantResponse:
    """Effective city of the panel session.

    Administrators switch with ``?tenant_city=<slug>``; moderators are
    locked to their home city.
    """
    if not (actor.is_admin or actor.is_moderator):
        raise HTTPException(status_code=403, detail="Panel access required")

    city = context.require_city()
    override = await store.load(actor.session_key) if actor.is_admin else None
    return AdminTenantResponse(
        actor_id=actor.user_id,
        role=str(actor.role),
        city_id=city.id,
        city_slug=city.slug,
        city_name=city.name,
        source=str(context.source),
        chosen_at=override.chosen_at if override is not None else None,
    )
