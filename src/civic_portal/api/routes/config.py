"""Tenant bootstrap endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from civic_portal.api.deps import TenantDep
from civic_portal.api.schemas import CityConfigResponse, CityGeo
from civic_portal.tenancy.context import city_status, city_timezone, tenant_key

router = APIRouter(tags=["config"])


@router.get("/config")
async def get_city_config(context: TenantDep) -> CityConfigResponse:
    """Return the resolved city's identity, branding and tenant key.

    Works with fallback resolution, so first-time visitors on an
    unknown path still get the default city's bootstrap.
    """
    city = context.require_city()
    return CityConfigResponse(
        id=city.id,
        slug=city.slug,
        name=city.name,
        uf=city.uf,
        status=city_status(city),
        timezone=city_timezone(city),
        brand=city.brand if isinstance(city.brand, dict) else {},
        geo=CityGeo(lat=city.lat, lon=city.lon),
        source=str(context.source),
        tenant_key=tenant_key(city),
    )
