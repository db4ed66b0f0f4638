"""Tests for tenant propagation into queued jobs."""

from __future__ import annotations

import uuid
from unittest.mock import patch

import pytest
import structlog

from civic_portal.errors import TenantJobContextError
from civic_portal.storage.orm import City
from civic_portal.tenancy.context import (
    ExecutionOrigin,
    ResolutionSource,
    TenantContext,
)
from civic_portal.tenancy.jobs import TenantJobPayload, restore_tenant_context
from tests.factories import make_city, mock_async_session, scalar_result


@pytest.fixture()
def itapema() -> City:
    return make_city("itapema-sc", "Itapema")


class TestCapture:
    def test_unbound_context_rejected(self) -> None:
        with pytest.raises(TenantJobContextError, match="without tenant"):
            TenantJobPayload.capture(TenantContext())

    def test_captures_city_and_trace(self, itapema: City) -> None:
        context = TenantContext()
        context.bind(itapema, ResolutionSource.HEADER)

        payload = TenantJobPayload.capture(context, module_key="reports")

        assert payload.city_id == str(itapema.id)
        assert payload.module_key == "reports"
        assert payload.trace_id is not None

    def test_explicit_trace_id_kept(self, itapema: City) -> None:
        context = TenantContext()
        context.bind(itapema, ResolutionSource.HEADER)
        payload = TenantJobPayload.capture(context, trace_id="trace-1")
        assert payload.trace_id == "trace-1"

    def test_dict_form(self, itapema: City) -> None:
        payload = TenantJobPayload(str(itapema.id), "reports", "t-1")
        assert payload.to_dict() == {
            "city_id": str(itapema.id),
            "module_key": "reports",
            "trace_id": "t-1",
        }
        assert TenantJobPayload.from_dict(payload.to_dict()) == payload

    def test_from_dict_tolerates_missing_keys(self) -> None:
        assert TenantJobPayload.from_dict({}) == TenantJobPayload(city_id=None)


class TestRestore:
    async def test_binds_queue_context_and_clears(self, itapema: City) -> None:
        session = mock_async_session()
        session.execute.return_value = scalar_result(itapema)
        payload = TenantJobPayload(str(itapema.id), "reports", "t-1")

        async with restore_tenant_context(session, payload) as context:
            assert context.city is itapema
            assert context.origin == ExecutionOrigin.QUEUE
            assert context.source == ResolutionSource.QUEUE_JOB
            bound = structlog.contextvars.get_contextvars()
            assert bound["tenant_slug"] == "itapema-sc"

        assert context.is_bound is False
        assert "tenant_slug" not in structlog.contextvars.get_contextvars()

    async def test_clears_even_when_job_fails(self, itapema: City) -> None:
        session = mock_async_session()
        session.execute.return_value = scalar_result(itapema)
        payload = TenantJobPayload(str(itapema.id))

        with pytest.raises(ValueError, match="boom"):
            async with restore_tenant_context(session, payload) as context:
                raise ValueError("boom")

        assert context.is_bound is False

    async def test_missing_city_id(self) -> None:
        session = mock_async_session()

        with patch("civic_portal.tenancy.jobs.logger") as mock_logger:
            with pytest.raises(TenantJobContextError, match="requires city_id"):
                async with restore_tenant_context(session, TenantJobPayload(None)):
                    pass

        assert mock_logger.error.call_args.args[0] == "tenant_job_missing_city_id"
        session.execute.assert_not_awaited()

    async def test_unknown_city(self) -> None:
        session = mock_async_session()
        session.execute.return_value = scalar_result(None)
        city_id = str(uuid.uuid4())

        with patch("civic_portal.tenancy.jobs.logger") as mock_logger:
            with pytest.raises(TenantJobContextError, match=city_id):
                async with restore_tenant_context(session, TenantJobPayload(city_id)):
                    pass

        assert mock_logger.error.call_args.args[0] == "tenant_job_city_not_found"
