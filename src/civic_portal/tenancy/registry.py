"""Read-only lookup of cities that can act as tenants."""

from __future__ import annotations

import time
import uuid
from threading import Lock

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from civic_portal.storage.orm import City, CityDomain


def normalize_slug(slug: str) -> str:
    return slug.strip().lower()


class DomainMapCache:
    """Process-local cache of ``host -> city_id`` with a TTL.

    Thread-safe via Lock. Holds ids only, never ORM instances, so
    nothing session-bound leaks between requests.
    """

    def __init__(self, ttl_seconds: int = 3600) -> None:
        self._ttl = ttl_seconds
        self._map: dict[str, uuid.UUID] | None = None
        self._loaded_at = 0.0
        self._lock = Lock()

    def get(self) -> dict[str, uuid.UUID] | None:
        with self._lock:
            if self._map is None:
                return None
            if time.monotonic() - self._loaded_at > self._ttl:
                self._map = None
                return None
            return self._map

    def put(self, domain_map: dict[str, uuid.UUID]) -> None:
        with self._lock:
            self._map = dict(domain_map)
            self._loaded_at = time.monotonic()

    def invalidate(self) -> None:
        with self._lock:
            self._map = None


class TenantRegistry:
    """Active-city queries. Stateless apart from the shared domain cache."""

    def __init__(
        self,
        session: AsyncSession,
        domain_cache: DomainMapCache | None = None,
    ) -> None:
        self._session = session
        self._domain_cache = domain_cache or DomainMapCache()

    async def get_active_by_slug(self, slug: str) -> City | None:
        slug = normalize_slug(slug)
        if not slug:
            return None
        stmt = select(City).where(City.slug == slug, City.active.is_(True))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active_by_id(self, city_id: uuid.UUID | str | None) -> City | None:
        if city_id is None or city_id == "":
            return None
        if not isinstance(city_id, uuid.UUID):
            try:
                city_id = uuid.UUID(str(city_id))
            except ValueError:
                return None
        stmt = select(City).where(City.id == city_id, City.active.is_(True))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def first_active_by_name(self) -> City | None:
        stmt = select(City).where(City.active.is_(True)).order_by(City.name).limit(1)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def domain_map(self) -> dict[str, uuid.UUID]:
        """Load (or reuse) the full ``domain -> city_id`` map."""
        cached = self._domain_cache.get()
        if cached is not None:
            return cached

        result = await self._session.execute(
            select(CityDomain.domain, CityDomain.city_id)
        )
        domain_map = {domain.lower(): city_id for domain, city_id in result.all()}
        self._domain_cache.put(domain_map)
        return domain_map

    async def is_known_domain(self, host: str) -> bool:
        return host in await self.domain_map()

    async def get_by_domain(self, host: str) -> City | None:
        """Active city mapped to ``host``, if any."""
        city_id = (await self.domain_map()).get(host)
        if city_id is None:
            return None
        return await self.get_active_by_id(city_id)
