"""Shared fixtures for integration tests requiring live infrastructure."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from typing import NamedTuple

import pytest
from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from civic_portal.config import get_settings
from civic_portal.storage.orm import Bairro, City, CityDomain


class SeededCities(NamedTuple):
    """Two active cities with one bairro each."""

    tijucas: City
    itapema: City
    tijucas_centro: Bairro
    itapema_meia_praia: Bairro


def _suffix() -> str:
    return uuid.uuid4().hex[:8]


def _cities(suffix: str) -> SeededCities:
    tijucas = City(
        slug=f"tijucas-{suffix}-sc", name=f"Tijucas {suffix}", uf="SC", active=True
    )
    itapema = City(
        slug=f"itapema-{suffix}-sc", name=f"Itapema {suffix}", uf="SC", active=True
    )
    return SeededCities(
        tijucas=tijucas,
        itapema=itapema,
        tijucas_centro=Bairro(city=tijucas, name="Centro", slug="centro"),
        itapema_meia_praia=Bairro(city=itapema, name="Meia Praia", slug="meia-praia"),
    )


# ── Engine ─────────────────────────────────────────────────────────


@pytest.fixture()
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an async engine from settings."""
    engine = create_async_engine(
        get_settings().database_url,
        pool_size=5,
        max_overflow=0,
    )
    yield engine
    await engine.dispose()


# ── Session factory ────────────────────────────────────────────────


@pytest.fixture()
def session_factory(
    async_engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the test engine."""
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── Session with savepoint rollback ───────────────────────────────


@pytest.fixture()
async def db_session(
    async_engine: AsyncEngine,
) -> AsyncGenerator[AsyncSession]:
    """Provide a session wrapped in a transaction, rolled back after test.

    Suitable for tests that use ``flush()`` but NOT ``commit()``.
    Tests that need ``commit()`` (e.g., queued jobs) should use
    ``session_factory`` + ``committed_cities`` instead.
    """
    async with async_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture()
async def seed_cities(db_session: AsyncSession) -> SeededCities:
    """Tijucas and Itapema, flushed inside the test transaction."""
    seeded = _cities(_suffix())
    db_session.add_all(seeded)
    db_session.add(
        CityDomain(city=seeded.itapema, domain=f"itapema-{_suffix()}.example.org")
    )
    await db_session.flush()
    return seeded


# ── Committed seeds (real commit + DELETE cleanup) ─────────────────


@pytest.fixture()
async def committed_cities(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[SeededCities]:
    """Seed both cities with real commits; cleaned up after the test."""
    from civic_portal.storage.orm import AddressMismatchAgg

    async with session_factory() as session:
        seeded = _cities(_suffix())
        session.add_all(seeded)
        await session.commit()

    yield seeded

    city_ids = [seeded.tijucas.id, seeded.itapema.id]
    async with session_factory() as session:
        await session.execute(
            AddressMismatchAgg.__table__.delete().where(
                AddressMismatchAgg.city_id.in_(city_ids)
            )
        )
        await session.execute(
            Bairro.__table__.delete().where(Bairro.city_id.in_(city_ids))
        )
        await session.execute(City.__table__.delete().where(City.id.in_(city_ids)))
        await session.commit()


# ── Redis ──────────────────────────────────────────────────────────


@pytest.fixture()
async def arq_redis() -> AsyncGenerator[ArqRedis]:
    """ARQ pool against the configured Redis."""
    pool = await create_pool(RedisSettings.from_dsn(get_settings().redis_url))
    yield pool
    await pool.aclose()
