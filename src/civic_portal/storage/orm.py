"""SQLAlchemy ORM models for the civic portal tenancy core."""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

import uuid_utils as uuid7_lib
from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    declared_attr,
    mapped_column,
    relationship,
)


def _uuid7() -> uuid.UUID:
    """Generate a UUIDv7 (time-ordered) for use as default PK value."""
    return uuid.UUID(bytes=uuid7_lib.uuid7().bytes)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


# ──────────────────────────────────────────────
# Tenants (cities)
# ──────────────────────────────────────────────


class CityStatus(StrEnum):
    ACTIVE = "active"
    DRAFT = "draft"
    SUSPENDED = "suspended"


class City(Base):
    """A municipality. Only ``active`` cities resolve as a tenant."""

    __tablename__ = "cities"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    slug: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(200), index=True)
    uf: Mapped[str] = mapped_column(String(2))
    status: Mapped[str] = mapped_column(String(20), default=CityStatus.ACTIVE.value)
    active: Mapped[bool] = mapped_column(default=True)
    lat: Mapped[float | None] = mapped_column(Float)
    lon: Mapped[float | None] = mapped_column(Float)
    timezone: Mapped[str | None] = mapped_column(String(64))
    brand: Mapped[dict[str, Any] | None] = mapped_column(JSONB)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    domains: Mapped[list["CityDomain"]] = relationship(
        back_populates="city", cascade="all, delete-orphan"
    )
    bairros: Mapped[list["Bairro"]] = relationship(back_populates="city")

    def __repr__(self) -> str:
        return f"<City(slug='{self.slug}', active={self.active})>"


class CityDomain(Base):
    """Host name mapped to a city (also acts as trusted-host whitelist)."""

    __tablename__ = "city_domains"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    city_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("cities.id", ondelete="CASCADE"), index=True
    )
    domain: Mapped[str] = mapped_column(String(255), unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    city: Mapped["City"] = relationship(back_populates="domains")


class Bairro(Base):
    """Neighborhood (sub-region) of a city."""

    __tablename__ = "bairros"
    __table_args__ = (UniqueConstraint("city_id", "slug", name="uq_bairros_city_slug"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    city_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("cities.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(200))
    slug: Mapped[str] = mapped_column(String(120))

    # Relationships
    city: Mapped["City"] = relationship(back_populates="bairros")


# ──────────────────────────────────────────────
# Actors & Auth
# ──────────────────────────────────────────────


class UserRole(StrEnum):
    MEMBER = "member"
    MODERATOR = "moderator"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    name: Mapped[str] = mapped_column(String(200))
    role: Mapped[str] = mapped_column(String(20), default=UserRole.MEMBER.value)
    # Home city; moderators are pinned to it.
    city_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("cities.id", ondelete="SET NULL"), index=True
    )
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    api_keys: Mapped[list["APIKey"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class APIKey(Base):
    __tablename__ = "api_keys"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    key_prefix: Mapped[str] = mapped_column(String(16))
    label: Mapped[str] = mapped_column(String(100), default="default")
    is_active: Mapped[bool] = mapped_column(default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="api_keys")


# ──────────────────────────────────────────────
# Tenant-owned content
# ──────────────────────────────────────────────


class TenantOwned:
    """Mixin for records partitioned by city.

    Marks the model for ``TenantScope``; reads and writes must go
    through the scope to get filtering and write checks.
    """

    @declared_attr
    def city_id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(ForeignKey("cities.id", ondelete="RESTRICT"), index=True)


class CitizenReport(TenantOwned, Base):
    __tablename__ = "citizen_reports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    bairro_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("bairros.id", ondelete="SET NULL"), index=True
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    title: Mapped[str] = mapped_column(String(300))
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="received")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ForumTopic(TenantOwned, Base):
    __tablename__ = "topics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    bairro_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("bairros.id", ondelete="SET NULL"), index=True
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    title: Mapped[str] = mapped_column(String(300))
    body: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class AddressMismatchAgg(TenantOwned, Base):
    """Aggregated bairro names a geocoding provider could not match."""

    __tablename__ = "address_mismatch_agg"
    __table_args__ = (
        UniqueConstraint(
            "city_id",
            "bairro_text_key",
            "provider",
            name="uq_address_mismatch_city_key_provider",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    bairro_text_key: Mapped[str] = mapped_column(String(200))
    bairro_text_example: Mapped[str] = mapped_column(String(300))
    provider: Mapped[str] = mapped_column(String(40), default="viacep")
    count: Mapped[int] = mapped_column(Integer, default=1)
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# ──────────────────────────────────────────────
# Moderation
# ──────────────────────────────────────────────


class RestrictionType(StrEnum):
    MUTE_FORUM = "mute_forum"
    BLOCK_REPORTS = "block_reports"
    BLOCK_UPLOADS = "block_uploads"
    SUSPEND_LOGIN = "suspend_login"
    SHADOWBAN = "shadowban"


class RestrictionScope(StrEnum):
    GLOBAL = "global"
    FORUM = "forum"
    REPORTS = "reports"
    UPLOADS = "uploads"


class UserRestriction(Base):
    """Moderation limit on a user, optionally scoped to one city/module."""

    __tablename__ = "user_restrictions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    type: Mapped[str] = mapped_column(String(40))
    scope: Mapped[str] = mapped_column(
        String(20), default=RestrictionScope.GLOBAL.value
    )
    # NULL means the restriction applies in every city.
    scope_city_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("cities.id", ondelete="CASCADE"), index=True
    )
    scope_module_key: Mapped[str | None] = mapped_column(String(50))
    reason: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    revoked_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def normalize_scope(self) -> None:
        """Derive ``scope_module_key`` and drop city for global scope."""
        self.scope_module_key = normalize_scope_module_key(
            self.scope, self.scope_module_key
        )
        if self.scope == RestrictionScope.GLOBAL:
            self.scope_city_id = None

    def is_active_at(self, now: datetime) -> bool:
        if self.revoked_at is not None:
            return False
        if self.starts_at is not None and self.starts_at > now:
            return False
        return self.ends_at is None or self.ends_at > now


_LEGACY_SCOPE_MODULE: dict[str, str] = {
    RestrictionScope.FORUM: "forum",
    RestrictionScope.REPORTS: "reports",
    RestrictionScope.UPLOADS: "forum",
}


def normalize_scope_module_key(scope: str | None, module_key: str | None) -> str | None:
    """Module key stored alongside a restriction scope.

    Global restrictions carry no module key. Explicit keys are
    lowercased; otherwise legacy scopes map to their module.
    """
    if scope == RestrictionScope.GLOBAL:
        return None
    if module_key and module_key.strip():
        return module_key.strip().lower()
    return _LEGACY_SCOPE_MODULE.get(scope or "")


@event.listens_for(UserRestriction, "before_insert")
@event.listens_for(UserRestriction, "before_update")
def _normalize_restriction_scope(
    mapper: Any, connection: Any, target: UserRestriction
) -> None:
    target.normalize_scope()


# ──────────────────────────────────────────────
# Observability
# ──────────────────────────────────────────────


class TenantIncident(Base):
    """Durable record of a tenancy anomaly."""

    __tablename__ = "tenant_incidents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    city_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("cities.id", ondelete="SET NULL"), index=True
    )
    type: Mapped[str] = mapped_column(String(80), index=True)
    severity: Mapped[str] = mapped_column(String(20), default="warning")
    source: Mapped[str | None] = mapped_column(String(80))
    module_key: Mapped[str | None] = mapped_column(String(50))
    request_id: Mapped[str | None] = mapped_column(String(100))
    trace_id: Mapped[str | None] = mapped_column(String(100))
    context: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
