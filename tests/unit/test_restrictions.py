"""Tests for module- and city-scoped moderation restrictions."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.dialects import postgresql

from civic_portal.errors import UserRestrictedError
from civic_portal.storage.orm import City, RestrictionType, UserRestriction
from civic_portal.tenancy.context import ResolutionSource, TenantContext
from civic_portal.tenancy.restrictions import (
    RestrictionEnforcementService,
    known_restriction_types,
)
from tests.factories import make_city, mock_async_session, scalar_result

NOW = datetime(2026, 5, 10, 12, 0, tzinfo=UTC)


def _compiled(stmt: object) -> tuple[str, dict[str, object]]:
    compiled = stmt.compile(dialect=postgresql.dialect())  # type: ignore[attr-defined]
    return str(compiled), dict(compiled.params)


@pytest.fixture()
def tijucas() -> City:
    return make_city("tijucas-sc", "Tijucas")


def _bound(city: City) -> TenantContext:
    context = TenantContext()
    context.bind(city, ResolutionSource.DOMAIN)
    return context


class TestKnownTypes:
    def test_filters_and_dedupes(self) -> None:
        assert known_restriction_types(
            ["block_reports", "teleport", "block_reports", "shadowban"]
        ) == ["block_reports", "shadowban"]

    def test_accepts_enum_members(self) -> None:
        assert known_restriction_types([RestrictionType.BLOCK_REPORTS]) == [
            "block_reports"
        ]


class TestBlockingQuery:
    def test_unbound_only_global_city_scope(self) -> None:
        service = RestrictionEnforcementService(mock_async_session(), TenantContext())
        user_id = uuid.uuid4()

        sql, params = _compiled(
            service.blocking_query(user_id, "Reports", ["block_reports"], now=NOW)
        )

        assert "user_restrictions.scope_city_id IS NULL" in sql
        assert "user_restrictions.scope_city_id =" not in sql
        assert user_id in params.values()
        assert "reports" in params.values()

    def test_bound_includes_city(self, tijucas: City) -> None:
        service = RestrictionEnforcementService(mock_async_session(), _bound(tijucas))

        sql, params = _compiled(
            service.blocking_query(uuid.uuid4(), "reports", ["block_reports"], now=NOW)
        )

        assert "user_restrictions.scope_city_id IS NULL" in sql
        assert "user_restrictions.scope_city_id =" in sql
        assert tijucas.id in params.values()

    def test_time_window_and_revocation(self) -> None:
        service = RestrictionEnforcementService(mock_async_session(), TenantContext())

        sql, params = _compiled(
            service.blocking_query(uuid.uuid4(), "forum", ["block_posts"], now=NOW)
        )

        assert "user_restrictions.revoked_at IS NULL" in sql
        assert "user_restrictions.starts_at IS NULL" in sql
        assert "user_restrictions.ends_at IS NULL" in sql
        assert NOW in params.values()
        assert "ORDER BY user_restrictions.created_at DESC" in sql

    def test_legacy_scope_for_known_modules(self) -> None:
        service = RestrictionEnforcementService(mock_async_session(), TenantContext())

        _, params = _compiled(
            service.blocking_query(uuid.uuid4(), "forum", ["block_posts"], now=NOW)
        )

        assert "global" in params.values()
        assert "forum" in params.values()

    def test_no_legacy_scope_for_other_modules(self) -> None:
        service = RestrictionEnforcementService(mock_async_session(), TenantContext())

        sql, _ = _compiled(
            service.blocking_query(uuid.uuid4(), "events", ["block_posts"], now=NOW)
        )

        assert sql.count("user_restrictions.scope =") == 1


class TestEnsureNotRestricted:
    async def test_unknown_types_skip_query(self, tijucas: City) -> None:
        session = mock_async_session()
        service = RestrictionEnforcementService(session, _bound(tijucas))

        await service.ensure_not_restricted(uuid.uuid4(), "reports", ["teleport"])

        session.execute.assert_not_awaited()

    async def test_no_restriction_passes(self, tijucas: City) -> None:
        session = mock_async_session()
        session.execute.return_value = scalar_result(None)
        service = RestrictionEnforcementService(session, _bound(tijucas))

        await service.ensure_not_restricted(uuid.uuid4(), "reports", ["block_reports"])

        session.execute.assert_awaited_once()

    async def test_blocking_restriction_raises(self, tijucas: City) -> None:
        restriction = UserRestriction(
            id=uuid.uuid4(),
            user_id=uuid.uuid4(),
            type="block_reports",
            scope="reports",
            scope_city_id=tijucas.id,
        )
        session = mock_async_session()
        session.execute.return_value = scalar_result(restriction)
        service = RestrictionEnforcementService(session, _bound(tijucas))

        with patch("civic_portal.tenancy.restrictions.logger") as mock_logger:
            with pytest.raises(UserRestrictedError) as exc_info:
                await service.ensure_not_restricted(
                    restriction.user_id, "reports", ["block_reports"]
                )

        assert exc_info.value.code == "USER_RESTRICTED"
        assert exc_info.value.status_code == 403
        assert exc_info.value.restriction_id == restriction.id
        kwargs = mock_logger.info.call_args.kwargs
        assert kwargs["scope_city_id"] == str(tijucas.id)


class TestRestrictionModel:
    def test_active_window(self) -> None:
        restriction = UserRestriction(
            type="block_reports",
            starts_at=NOW - timedelta(days=1),
            ends_at=NOW + timedelta(days=1),
        )
        assert restriction.is_active_at(NOW) is True
        assert restriction.is_active_at(NOW + timedelta(days=2)) is False
        assert restriction.is_active_at(NOW - timedelta(days=2)) is False

    def test_revoked_is_inactive(self) -> None:
        restriction = UserRestriction(type="block_reports", revoked_at=NOW)
        assert restriction.is_active_at(NOW) is False
