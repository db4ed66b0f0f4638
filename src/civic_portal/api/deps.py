"""FastAPI dependency injection."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, cast

from arq.connections import ArqRedis
from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import APIKeyHeader
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from civic_portal.auth.context import ActorContext
from civic_portal.auth.keys import hash_api_key
from civic_portal.config import Settings, get_settings
from civic_portal.logging_config import bind_tenant_log_context
from civic_portal.storage.database import get_session
from civic_portal.storage.orm import APIKey, City, User, UserRole
from civic_portal.tenancy.context import TenantContext, tenant_key
from civic_portal.tenancy.incidents import TenantIncidentReporter
from civic_portal.tenancy.override import (
    OverrideStore,
    PolicyEnvironment,
    apply_actor_policy,
)
from civic_portal.tenancy.registry import DomainMapCache, TenantRegistry
from civic_portal.tenancy.resolver import TenantResolver, require_explicit_tenant

__all__ = [
    "get_arq_redis",
    "get_current_actor",
    "get_domain_cache",
    "get_incident_reporter",
    "get_override_store",
    "get_session",
    "get_tenant_context",
    "require_actor",
    "require_tenant",
]

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

SessionDep = Annotated[AsyncSession, Depends(get_session)]
SettingsDep = Annotated[Settings, Depends(get_settings)]


async def get_current_actor(
    session: SessionDep,
    api_key: str | None = Security(api_key_header),
) -> ActorContext | None:
    """Authenticate via API key when one is sent; anonymous otherwise.

    Raises:
        HTTPException 401: invalid, inactive, or expired key.
    """
    if not api_key:
        return None

    stmt = (
        select(APIKey)
        .join(User, APIKey.user_id == User.id)
        .where(
            APIKey.key_hash == hash_api_key(api_key),
            APIKey.is_active.is_(True),
            User.is_active.is_(True),
        )
        .options(selectinload(APIKey.user))
    )
    result = await session.execute(stmt)
    record = result.scalar_one_or_none()

    if record is None:
        raise HTTPException(status_code=401, detail="Invalid API key")

    if record.expires_at is not None and record.expires_at < datetime.now(UTC):
        raise HTTPException(status_code=401, detail="API key expired")

    return ActorContext(
        user_id=record.user.id,
        name=record.user.name,
        role=UserRole(record.user.role),
        home_city_id=record.user.city_id,
        session_key=record.key_prefix,
    )


ActorDep = Annotated[ActorContext | None, Depends(get_current_actor)]


async def require_actor(actor: ActorDep) -> ActorContext:
    if actor is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return actor


async def get_arq_redis(request: Request) -> ArqRedis:
    """Retrieve ARQ Redis pool from app state.

    Initialized during lifespan startup.
    """
    return cast(ArqRedis, request.app.state.arq_redis)


async def get_domain_cache(request: Request) -> DomainMapCache:
    """Process-wide domain map cache, created during lifespan startup."""
    return cast(DomainMapCache, request.app.state.domain_cache)


async def get_incident_reporter(request: Request) -> TenantIncidentReporter:
    return cast(TenantIncidentReporter, request.app.state.incident_reporter)


async def get_override_store(request: Request) -> OverrideStore:
    return cast(OverrideStore, request.app.state.override_store)


async def get_tenant_context(
    request: Request,
    session: SessionDep,
    settings: SettingsDep,
    actor: ActorDep,
    domain_cache: Annotated[DomainMapCache, Depends(get_domain_cache)],
    reporter: Annotated[TenantIncidentReporter, Depends(get_incident_reporter)],
    store: Annotated[OverrideStore, Depends(get_override_store)],
) -> TenantContext:
    """Resolve the request tenant, then apply the actor's policy.

    A fresh context per request; FastAPI caches it for every other
    dependency of the same request. The context is also stored on
    ``request.state`` for the response-header middleware.
    """
    context = TenantContext()
    registry = TenantRegistry(session, domain_cache)
    resolver = TenantResolver.from_settings(settings, registry, reporter)

    await resolver.resolve_and_bind(
        context,
        request.url.hostname or request.headers.get("host", ""),
        request.url.path,
        request.headers.get(settings.tenancy_city_header),
        request_id=request.headers.get("X-Request-Id"),
    )

    switch_slug = None
    if actor is not None and actor.is_admin:
        switch_slug = request.query_params.get(settings.tenancy_switch_query_param)
    await apply_actor_policy(
        actor,
        context,
        PolicyEnvironment(registry=registry, store=store, reporter=reporter),
        switch_slug=switch_slug,
    )

    city = context.require_city()
    request.state.tenant_context = context
    bind_tenant_log_context(
        city_id=str(city.id),
        slug=city.slug,
        tenant_key=tenant_key(city),
        source=str(context.source),
    )
    return context


TenantDep = Annotated[TenantContext, Depends(get_tenant_context)]


async def require_tenant(context: TenantDep) -> City:
    """Tenant-required routes: reject fallback-only resolution."""
    return require_explicit_tenant(context)
