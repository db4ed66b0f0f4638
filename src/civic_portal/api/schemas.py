"""Request/response schemas for the API layer."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# --- Errors ---


class ErrorResponse(BaseModel):
    """Uniform error body for tenancy failures."""

    success: bool = False
    error: str = Field(description="Machine-readable code, e.g. ``CITY_INACTIVE``.")
    message: str = Field(description="User-facing message (pt-BR).")


# --- Tenant bootstrap ---


class CityGeo(BaseModel):
    lat: float | None
    lon: float | None


class CityConfigResponse(BaseModel):
    """Response for ``GET /config``: everything a client needs to render.

    ``tenant_key`` changes whenever slug, timezone, status or brand
    change, so clients can drop cached branding on drift.
    """

    id: uuid.UUID
    slug: str
    name: str
    uf: str
    status: str
    timezone: str
    brand: dict[str, Any] = Field(default_factory=dict)
    geo: CityGeo
    source: str = Field(description="How the city was resolved.")
    tenant_key: str


# --- Citizen reports ---


class ReportCreateRequest(BaseModel):
    """Request body for POST /reports."""

    title: str = Field(..., min_length=1, max_length=300)
    description: str | None = None
    bairro_id: uuid.UUID | None = None
    address_bairro: str | None = Field(
        default=None,
        max_length=300,
        description="Neighbourhood text from the address lookup, when it "
        "matched no known bairro.",
    )


class ReportUpdateRequest(BaseModel):
    """Request body for PATCH /reports/{id}.

    ``city_id`` and ``bairro_id`` are accepted but every write is
    checked against the bound city.
    """

    title: str | None = Field(default=None, min_length=1, max_length=300)
    description: str | None = None
    status: str | None = Field(default=None, max_length=20)
    bairro_id: uuid.UUID | None = None
    city_id: uuid.UUID | None = None


class ReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    city_id: uuid.UUID
    bairro_id: uuid.UUID | None
    user_id: uuid.UUID | None
    title: str
    description: str | None
    status: str
    created_at: datetime
    updated_at: datetime


class ReportListResponse(BaseModel):
    """Paginated response for ``GET /reports``."""

    items: list[ReportResponse] = Field(
        description="Reports of the current city for this page."
    )
    total: int = Field(description="Total number of reports in the current city.")
    limit: int = Field(description="Maximum items per page (as requested).")
    offset: int = Field(description="Number of items skipped (as requested).")


# --- Admin ---


class AdminTenantResponse(BaseModel):
    """Effective city for an administrator or moderator session."""

    actor_id: uuid.UUID
    role: str
    city_id: uuid.UUID
    city_slug: str
    city_name: str
    source: str
    chosen_at: datetime | None = None
