"""Moderation restrictions scoped by module and city."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import UTC, datetime

import structlog
from sqlalchemy import Select, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from civic_portal.errors import UserRestrictedError
from civic_portal.storage.orm import RestrictionScope, RestrictionType, UserRestriction
from civic_portal.tenancy.context import TenantContext

logger = structlog.get_logger()

_KNOWN_TYPES: frozenset[str] = frozenset(t.value for t in RestrictionType)

_LEGACY_MODULE_SCOPE: dict[str, RestrictionScope] = {
    "forum": RestrictionScope.FORUM,
    "reports": RestrictionScope.REPORTS,
}


def known_restriction_types(candidates: Iterable[str]) -> list[str]:
    """Keep recognized restriction types, preserving order, no duplicates."""
    seen: list[str] = []
    for value in candidates:
        value = str(value)
        if value in _KNOWN_TYPES and value not in seen:
            seen.append(value)
    return seen


class RestrictionEnforcementService:
    """Decide whether a user's active restrictions block an action.

    City scoping follows the tenant context: restrictions bound to
    another city are invisible, global ones (``scope_city_id`` NULL)
    apply everywhere. With no tenant bound only global ones apply.
    """

    def __init__(self, session: AsyncSession, context: TenantContext) -> None:
        self._session = session
        self._context = context

    def blocking_query(
        self,
        user_id: uuid.UUID,
        module_key: str,
        types: list[str],
        *,
        now: datetime | None = None,
    ) -> Select[tuple[UserRestriction]]:
        now = now or datetime.now(UTC)
        module_key = module_key.strip().lower()

        scope_filters = [
            UserRestriction.scope == RestrictionScope.GLOBAL.value,
            UserRestriction.scope_module_key == module_key,
        ]
        legacy_scope = _LEGACY_MODULE_SCOPE.get(module_key)
        if legacy_scope is not None:
            scope_filters.append(UserRestriction.scope == legacy_scope.value)

        stmt = select(UserRestriction).where(
            UserRestriction.user_id == user_id,
            UserRestriction.type.in_(types),
            UserRestriction.revoked_at.is_(None),
            or_(UserRestriction.starts_at.is_(None), UserRestriction.starts_at <= now),
            or_(UserRestriction.ends_at.is_(None), UserRestriction.ends_at > now),
            or_(*scope_filters),
        )

        city_id = self._context.city_id
        if city_id is None:
            stmt = stmt.where(UserRestriction.scope_city_id.is_(None))
        else:
            stmt = stmt.where(
                or_(
                    UserRestriction.scope_city_id.is_(None),
                    UserRestriction.scope_city_id == city_id,
                )
            )

        return stmt.order_by(UserRestriction.created_at.desc()).limit(1)

    async def first_blocking_restriction(
        self,
        user_id: uuid.UUID,
        module_key: str,
        candidate_types: Iterable[str],
    ) -> UserRestriction | None:
        """Most recent active restriction blocking ``module_key``, if any."""
        types = known_restriction_types(candidate_types)
        if not types:
            return None

        result = await self._session.execute(
            self.blocking_query(user_id, module_key, types)
        )
        return result.scalar_one_or_none()

    async def ensure_not_restricted(
        self,
        user_id: uuid.UUID,
        module_key: str,
        candidate_types: Iterable[str],
    ) -> None:
        """Raise when an active restriction blocks the action.

        Raises:
            UserRestrictedError: carrying the blocking restriction id.
        """
        restriction = await self.first_blocking_restriction(
            user_id, module_key, candidate_types
        )
        if restriction is None:
            return
        logger.info(
            "user_restriction_blocked",
            user_id=str(user_id),
            module_key=module_key,
            restriction_id=str(restriction.id),
            restriction_type=restriction.type,
            scope_city_id=(
                str(restriction.scope_city_id) if restriction.scope_city_id else None
            ),
        )
        raise UserRestrictedError(restriction.id)
