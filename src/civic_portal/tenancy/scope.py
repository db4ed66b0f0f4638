"""Explicit tenant scope for tenant-owned models.

Every read or write of a ``TenantOwned`` model goes through a
``TenantScope`` built from the active ``TenantContext``:

* ``select()`` filters by the bound city (no filter when unbound)
* ``for_city()`` filters by an explicitly named city
* ``without_tenant()`` removes the filter and is always audited
* ``add()`` / ``save()`` stamp ``city_id`` and reject cross-tenant writes
"""

from __future__ import annotations

import sys
import uuid
from collections.abc import Sequence
from typing import Any, Generic, TypeVar

import structlog
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import InstrumentedAttribute

from civic_portal.errors import (
    CrossTenantWriteError,
    MissingTenantError,
    SubRegionMismatchError,
)
from civic_portal.storage.orm import Bairro, TenantOwned
from civic_portal.tenancy.context import ExecutionOrigin, TenantContext

logger = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=TenantOwned)


def requires_city_id(model: type[Any]) -> bool:
    """True when the model's table has a ``city_id`` column."""
    table = getattr(model, "__table__", None)
    return table is not None and "city_id" in table.c


def _caller() -> str:
    frame = sys._getframe(2)
    code = frame.f_code
    return f"{code.co_filename}:{frame.f_lineno}:{code.co_name}"


class TenantScope(Generic[ModelT]):
    """Tenant-filtered queries and checked writes for one model.

    Args:
        session: Active DB session (caller controls transaction).
        context: Tenant binding of the current request/job.
        model: ``TenantOwned`` ORM class.
        actor_id: Authenticated actor, recorded in audit logs.
        strict: Refuse unfiltered reads when no tenant is bound.
    """

    def __init__(
        self,
        session: AsyncSession,
        context: TenantContext,
        model: type[ModelT],
        *,
        actor_id: uuid.UUID | None = None,
        strict: bool = False,
    ) -> None:
        if not requires_city_id(model):
            raise TypeError(f"{model.__name__} has no city_id column")
        self._session = session
        self._context = context
        self._model = model
        self._actor_id = actor_id
        self._strict = strict

    @property
    def model(self) -> type[ModelT]:
        return self._model

    # ── Reads ──

    def select(self) -> Select[tuple[ModelT]]:
        """``select(model)`` limited to the bound city.

        Raises:
            MissingTenantError: strict scope with no tenant bound.
        """
        stmt = select(self._model)
        city_id = self._context.city_id
        if city_id is None:
            if self._strict:
                raise MissingTenantError(
                    f"strict scope on {self._model.__name__} without tenant"
                )
            return stmt
        return stmt.where(self._model.city_id == city_id)

    def for_city(self, city_id: uuid.UUID) -> Select[tuple[ModelT]]:
        """``select(model)`` limited to an explicit city, ignoring context."""
        return select(self._model).where(self._model.city_id == city_id)

    def without_tenant(self, *, reason: str) -> Select[tuple[ModelT]]:
        """Unfiltered ``select(model)`` for admin/reporting use.

        Crosses isolation on purpose, so every call is logged.
        """
        city_id = self._context.city_id
        logger.warning(
            "tenant_scope_bypassed",
            model=self._model.__name__,
            caller=_caller(),
            actor_id=str(self._actor_id) if self._actor_id else None,
            tenant_city_id=str(city_id) if city_id else None,
            tenant_source=str(self._context.source) if self._context.source else None,
            reason=reason,
        )
        return select(self._model)

    async def get(self, entity_id: uuid.UUID) -> ModelT | None:
        """Get by primary key, None when it belongs to another city."""
        model_id = self._model.id  # type: ignore[attr-defined]
        stmt = self.select().where(model_id == entity_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        order_by: InstrumentedAttribute[Any] | None = None,
    ) -> Sequence[ModelT]:
        column = order_by
        if column is None:
            column = self._model.created_at  # type: ignore[attr-defined]
        stmt = self.select().order_by(column.desc()).limit(limit).offset(offset)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count(self) -> int:
        stmt = select(func.count()).select_from(self.select().subquery())
        result = await self._session.execute(stmt)
        return result.scalar_one()

    # ── Writes ──

    async def add(self, entity: ModelT) -> ModelT:
        """Stamp ``city_id`` from the context, validate and flush.

        Raises:
            MissingTenantError: no city supplied and none bound.
            CrossTenantWriteError: supplied city differs from the bound one.
            SubRegionMismatchError: bairro belongs to another city.
        """
        if entity.city_id is None and self._context.city_id is not None:
            entity.city_id = self._context.city_id

        if entity.city_id is None:
            logger.error(
                "tenant_missing_on_create",
                model=self._model.__name__,
                actor_id=str(self._actor_id) if self._actor_id else None,
            )
            raise MissingTenantError(f"{self._model.__name__} created without city_id")

        await self.check_write(entity)
        self._session.add(entity)
        await self._session.flush()
        return entity

    async def save(self, entity: ModelT) -> ModelT:
        """Validate an already-loaded entity after mutation and flush."""
        await self.check_write(entity)
        await self._session.flush()
        return entity

    async def check_write(self, entity: ModelT) -> None:
        """Cross-tenant and bairro/city consistency checks."""
        bound_city_id = self._context.city_id
        if (
            self._context.origin == ExecutionOrigin.HTTP
            and entity.city_id is not None
            and bound_city_id is not None
            and entity.city_id != bound_city_id
        ):
            logger.warning(
                "tenant_cross_write_rejected",
                model=self._model.__name__,
                actor_id=str(self._actor_id) if self._actor_id else None,
                entity_city_id=str(entity.city_id),
                tenant_city_id=str(bound_city_id),
            )
            raise CrossTenantWriteError(
                f"{self._model.__name__}.city_id={entity.city_id} "
                f"!= tenant {bound_city_id}"
            )

        bairro_id = getattr(entity, "bairro_id", None)
        if bairro_id is None or entity.city_id is None:
            return

        # A pending bairro_id change must not reach the DB before the check.
        with self._session.no_autoflush:
            bairro_city_id = await self._session.scalar(
                select(Bairro.city_id).where(Bairro.id == bairro_id)
            )
        if bairro_city_id != entity.city_id:
            logger.warning(
                "tenant_bairro_city_mismatch",
                model=self._model.__name__,
                actor_id=str(self._actor_id) if self._actor_id else None,
                bairro_id=str(bairro_id),
                bairro_city_id=str(bairro_city_id) if bairro_city_id else None,
                entity_city_id=str(entity.city_id),
            )
            raise SubRegionMismatchError(
                f"bairro {bairro_id} does not belong to city {entity.city_id}"
            )
