"""Tests for TenantRegistry and the domain map cache."""

from __future__ import annotations

import uuid
from unittest.mock import MagicMock, patch

from sqlalchemy.dialects import postgresql

from civic_portal.tenancy.registry import DomainMapCache, TenantRegistry, normalize_slug
from tests.factories import make_city, mock_async_session, scalar_result


def _compiled(stmt: object) -> str:
    return str(
        stmt.compile(  # type: ignore[attr-defined]
            dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True}
        )
    )


class TestNormalizeSlug:
    def test_strips_and_lowercases(self) -> None:
        assert normalize_slug("  Tijucas-SC ") == "tijucas-sc"


class TestDomainMapCache:
    def test_empty_cache_misses(self) -> None:
        assert DomainMapCache().get() is None

    def test_put_then_get(self) -> None:
        cache = DomainMapCache(ttl_seconds=60)
        city_id = uuid.uuid4()
        cache.put({"etijucas.com.br": city_id})
        assert cache.get() == {"etijucas.com.br": city_id}

    def test_expires_after_ttl(self) -> None:
        cache = DomainMapCache(ttl_seconds=60)
        with patch("civic_portal.tenancy.registry.time.monotonic", return_value=1000.0):
            cache.put({"etijucas.com.br": uuid.uuid4()})
        with patch("civic_portal.tenancy.registry.time.monotonic", return_value=1061.0):
            assert cache.get() is None

    def test_invalidate(self) -> None:
        cache = DomainMapCache()
        cache.put({"a": uuid.uuid4()})
        cache.invalidate()
        assert cache.get() is None


class TestTenantRegistry:
    async def test_get_active_by_slug_filters_active(self) -> None:
        session = mock_async_session()
        city = make_city()
        session.execute.return_value = scalar_result(city)

        found = await TenantRegistry(session).get_active_by_slug(" Tijucas-SC ")

        assert found is city
        sql = _compiled(session.execute.call_args[0][0])
        assert "cities.slug = 'tijucas-sc'" in sql
        assert "cities.active IS true" in sql

    async def test_blank_slug_skips_query(self) -> None:
        session = mock_async_session()
        assert await TenantRegistry(session).get_active_by_slug("  ") is None
        session.execute.assert_not_called()

    async def test_get_active_by_id_invalid_string(self) -> None:
        session = mock_async_session()
        assert await TenantRegistry(session).get_active_by_id("not-a-uuid") is None
        assert await TenantRegistry(session).get_active_by_id(None) is None
        session.execute.assert_not_called()

    async def test_get_active_by_id_accepts_string(self) -> None:
        session = mock_async_session()
        city = make_city()
        session.execute.return_value = scalar_result(city)

        found = await TenantRegistry(session).get_active_by_id(str(city.id))

        assert found is city

    async def test_domain_map_cached_between_registries(self) -> None:
        """The cache is process-wide; each request gets a new registry."""
        cache = DomainMapCache()
        city_id = uuid.uuid4()
        session = mock_async_session()
        result = MagicMock()
        result.all.return_value = [("ETijucas.com.br", city_id)]
        session.execute.return_value = result

        first = await TenantRegistry(session, cache).domain_map()
        second = await TenantRegistry(session, cache).domain_map()

        assert first == {"etijucas.com.br": city_id}
        assert second == first
        assert session.execute.await_count == 1

    async def test_is_known_domain(self) -> None:
        cache = DomainMapCache()
        cache.put({"etijucas.com.br": uuid.uuid4()})
        registry = TenantRegistry(mock_async_session(), cache)
        assert await registry.is_known_domain("etijucas.com.br") is True
        assert await registry.is_known_domain("evil.example") is False

    async def test_get_by_domain_unknown_host(self) -> None:
        cache = DomainMapCache()
        cache.put({})
        session = mock_async_session()
        assert await TenantRegistry(session, cache).get_by_domain("x.example") is None
        session.execute.assert_not_called()
