"""HTTP middleware: request logging and tenant response headers."""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from civic_portal.logging_config import clear_tenant_log_context
from civic_portal.tenancy.context import TenantContext, city_timezone, tenant_key

logger = structlog.get_logger()

TENANT_CITY_HEADER = "X-Tenant-City"
TENANT_TIMEZONE_HEADER = "X-Tenant-Timezone"
TENANT_KEY_HEADER = "X-Tenant-Key"


def _tenant_context(request: Request) -> TenantContext | None:
    return getattr(request.state, "tenant_context", None)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log HTTP requests with method, path, status code, latency and city."""

    SKIP_PATHS: frozenset[str] = frozenset(
        {"/health", "/docs", "/openapi.json", "/redoc"}
    )

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request and log timing information."""
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = int((time.perf_counter() - start) * 1000)

        context = _tenant_context(request)
        city = context.city if context is not None else None
        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=latency_ms,
            tenant_city=city.slug if city is not None else None,
            tenant_source=str(context.source) if city is not None else None,
        )
        return response


class TenantHeadersMiddleware(BaseHTTPMiddleware):
    """Expose the effective city on every tenant-scoped response.

    Headers are only set when a route resolved a tenant. Tenant log
    context is reset on entry so a reused worker never logs a previous
    request's city.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        clear_tenant_log_context()
        response = await call_next(request)

        context = _tenant_context(request)
        if context is None or context.city is None:
            return response

        city = context.city
        response.headers[TENANT_CITY_HEADER] = city.slug
        response.headers[TENANT_TIMEZONE_HEADER] = city_timezone(city)
        response.headers[TENANT_KEY_HEADER] = tenant_key(city)
        return response
