"""Backfill of ``city_id`` on legacy tenant-owned rows.

Runs from the CLI without any tenant binding: it is the one place that
writes ``city_id`` across every city at once.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import CursorResult, select, update
from sqlalchemy.orm import Session

from civic_portal.storage.orm import Bairro
from civic_portal.tenancy.scope import requires_city_id

logger = structlog.get_logger()


def backfill_city_id(session: Session, model: type[Any]) -> int:
    """Copy ``bairro.city_id`` into rows whose ``city_id`` is NULL.

    Rows without a bairro, or pointing to a missing bairro, are left
    untouched. The caller commits.

    Returns:
        Number of rows updated.

    Raises:
        TypeError: model has no ``city_id`` or no ``bairro_id`` column.
    """
    if not requires_city_id(model) or "bairro_id" not in model.__table__.c:
        raise TypeError(f"{model.__name__} has no city_id/bairro_id to backfill")

    bairro_city = (
        select(Bairro.city_id).where(Bairro.id == model.bairro_id).scalar_subquery()
    )
    stmt = (
        update(model)
        .where(
            model.city_id.is_(None),
            model.bairro_id.is_not(None),
            model.bairro_id.in_(select(Bairro.id)),
        )
        .values(city_id=bairro_city)
        .execution_options(synchronize_session=False)
    )
    result: CursorResult[Any] = session.execute(stmt)  # type: ignore[assignment]
    updated = result.rowcount or 0

    logger.info(
        "tenant_backfill_completed",
        model=model.__name__,
        table=model.__tablename__,
        rows_updated=updated,
    )
    return updated
