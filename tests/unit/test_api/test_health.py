"""Tests for FastAPI bootstrap: health, error handling, lifespan."""

import asyncio
from collections.abc import AsyncGenerator, Generator
from contextlib import contextmanager
from typing import NamedTuple
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import Request
from httpx import ASGITransport, AsyncClient

from civic_portal.api.app import app, tenant_error_handler, unhandled_exception_handler
from civic_portal.errors import MissingTenantError
from civic_portal.config import CounterBackend
from civic_portal.tenancy.incidents import (
    RedisWindowCounter,
    SlidingWindowCounter,
    TenantIncidentReporter,
)
from civic_portal.tenancy.override import RedisOverrideStore
from civic_portal.tenancy.registry import DomainMapCache


class HealthMocks(NamedTuple):
    """Mocks returned by mock_health_deps context manager."""

    db_session: AsyncMock
    redis: AsyncMock


@contextmanager
def mock_health_deps(
    *,
    db_error: Exception | None = None,
    redis_error: Exception | None = None,
) -> Generator[HealthMocks]:
    """Mock DB and Redis dependencies for health check tests.

    Args:
        db_error: If set, async_session __aenter__ raises this exception.
        redis_error: If set, arq_redis.ping raises this exception.
    """
    mock_redis = AsyncMock()
    if redis_error:
        mock_redis.ping = AsyncMock(side_effect=redis_error)

    mock_db_session = AsyncMock()

    with patch("civic_portal.api.app.async_session") as mock_session_factory:
        if db_error:
            mock_session_factory.return_value.__aenter__ = AsyncMock(
                side_effect=db_error
            )
        else:
            mock_session_factory.return_value.__aenter__ = AsyncMock(
                return_value=mock_db_session
            )
        mock_session_factory.return_value.__aexit__ = AsyncMock(return_value=False)
        app.state.arq_redis = mock_redis

        yield HealthMocks(db_session=mock_db_session, redis=mock_redis)


@pytest.fixture()
async def client() -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://localhost",
    ) as ac:
        yield ac


class TestHealth:
    async def test_health_all_ok(self, client: AsyncClient) -> None:
        """GET /health returns 200 when DB and Redis are reachable."""
        with mock_health_deps():
            response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["checks"] == {"db": "ok", "redis": "ok"}
        assert "timestamp" in data

    async def test_health_db_down(self, client: AsyncClient) -> None:
        with mock_health_deps(db_error=TimeoutError("db timeout")):
            response = await client.get("/health")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert "error" in data["checks"]["db"]
        assert data["checks"]["redis"] == "ok"

    async def test_health_redis_down(self, client: AsyncClient) -> None:
        with mock_health_deps(redis_error=ConnectionError("redis down")):
            response = await client.get("/health")

        assert response.status_code == 503
        data = response.json()
        assert data["checks"]["db"] == "ok"
        assert "error" in data["checks"]["redis"]

    async def test_health_carries_no_tenant(self, client: AsyncClient) -> None:
        """Health never resolves a city, so no tenant headers are set."""
        with mock_health_deps():
            response = await client.get("/health")

        assert "X-Tenant-City" not in response.headers


class TestErrorHandling:
    async def test_unhandled_exception_handler_returns_500(self) -> None:
        mock_request = Request(
            scope={"type": "http", "method": "GET", "path": "/test", "headers": []}
        )
        response = await unhandled_exception_handler(mock_request, RuntimeError("boom"))
        assert response.status_code == 500
        assert response.body == b'{"detail":"Internal server error"}'

    async def test_tenant_error_body_hides_detail(self) -> None:
        mock_request = Request(
            scope={
                "type": "http",
                "method": "POST",
                "path": "/api/v1/reports",
                "headers": [],
                "app": app,
            }
        )
        exc = MissingTenantError("CitizenReport created without city_id")

        response = await tenant_error_handler(mock_request, exc)

        assert response.status_code == 422
        assert b"TENANT_MISSING" in response.body
        assert b"CitizenReport" not in response.body


class TestLifespan:
    async def test_lifespan_initializes_tenancy_state(self) -> None:
        mock_arq = AsyncMock()
        with (
            patch("civic_portal.api.app.engine") as mock_engine,
            patch(
                "civic_portal.api.app.create_pool",
                new_callable=AsyncMock,
                return_value=mock_arq,
            ),
        ):
            mock_engine.dispose = AsyncMock()

            from civic_portal.api.app import lifespan

            async with lifespan(app):
                assert app.state.arq_redis is mock_arq
                assert isinstance(app.state.override_store, RedisOverrideStore)
                assert isinstance(app.state.incident_reporter, TenantIncidentReporter)
                assert isinstance(app.state.domain_cache, DomainMapCache)
                counter = app.state.incident_reporter.counter
                assert isinstance(counter, RedisWindowCounter)

            mock_engine.dispose.assert_awaited_once()
            mock_arq.aclose.assert_awaited_once()

    async def test_memory_counter_starts_cleanup_loop(self) -> None:
        from civic_portal.api import app as app_module

        with (
            patch("civic_portal.api.app.engine") as mock_engine,
            patch(
                "civic_portal.api.app.create_pool",
                new_callable=AsyncMock,
                return_value=AsyncMock(),
            ),
            patch.object(
                app_module.settings, "tenancy_mismatch_counter", CounterBackend.MEMORY
            ),
            patch.object(app_module, "_cleanup_loop", new_callable=AsyncMock) as loop,
        ):
            mock_engine.dispose = AsyncMock()

            async with app_module.lifespan(app):
                counter = app.state.incident_reporter.counter
                assert isinstance(counter, SlidingWindowCounter)

        loop.assert_called_once_with(counter)

    async def test_cleanup_loop_survives_errors(self) -> None:
        from civic_portal.api import app as app_module

        counter = MagicMock()
        counter.cleanup.side_effect = [RuntimeError("boom"), 2]
        sleeps = [None, None, asyncio.CancelledError()]

        with (
            patch.object(
                app_module.asyncio, "sleep", new_callable=AsyncMock, side_effect=sleeps
            ),
            pytest.raises(asyncio.CancelledError),
        ):
            await app_module._cleanup_loop(counter)

        assert counter.cleanup.call_count == 2
