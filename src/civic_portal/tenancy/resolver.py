"""Tenant resolution from request signals.

Resolution order (first match wins):

1. ``X-City`` header naming an active city (when header override is on)
2. Request host mapped through ``city_domains``
3. Path prefix ``/<uf>/<city>`` or ``/api/v1/<uf>/<city>``
4. Configured default city (skipped in strict mode)

A default that is missing or inactive fails the request.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from civic_portal.config import Settings
from civic_portal.errors import (
    HostNotTrustedError,
    TenantNotFoundError,
    TenantRequiredError,
)
from civic_portal.storage.orm import City
from civic_portal.tenancy.context import ResolutionSource, TenantContext
from civic_portal.tenancy.incidents import IncidentType, TenantIncidentReporter
from civic_portal.tenancy.registry import TenantRegistry, normalize_slug

logger = structlog.get_logger()

_API_PATH_RE = re.compile(r"^/api/v1/([a-z]{2})/([a-z0-9-]+)", re.IGNORECASE)
_PATH_RE = re.compile(r"^/([a-z]{2})/([a-z0-9-]+)", re.IGNORECASE)
_WWW_RE = re.compile(r"^www\.", re.IGNORECASE)
_PORT_RE = re.compile(r":\d+$")


def normalize_host(host: str) -> str:
    """Lowercase host without ``www.`` prefix and port."""
    host = _WWW_RE.sub("", host.strip())
    host = _PORT_RE.sub("", host)
    return host.lower()


def slug_from_path(path: str) -> str | None:
    """Derive a city slug from canonical ``/<uf>/<city>`` URLs.

    ``/sc/tijucas/...`` -> ``tijucas-sc``.
    """
    match = _API_PATH_RE.match(path) or _PATH_RE.match(path)
    if match is None:
        return None
    uf, city = match.group(1).lower(), match.group(2).lower()
    return f"{city}-{uf}"


def host_matches(host: str, patterns: Iterable[str]) -> bool:
    """Exact or ``*.suffix`` wildcard match against trusted host patterns."""
    for pattern in patterns:
        if not pattern:
            continue
        pattern = pattern.lower()
        if pattern == host:
            return True
        if pattern.startswith("*.") and host.endswith(pattern[1:]):
            return True
    return False


@dataclass(frozen=True)
class Resolution:
    """Outcome of tenant resolution for one request."""

    city: City
    source: ResolutionSource
    header_slug: str | None = None
    path_slug: str | None = None


class TenantResolver:
    """Determine the tenant of a request and bind it to its context."""

    def __init__(
        self,
        registry: TenantRegistry,
        reporter: TenantIncidentReporter,
        *,
        default_city_slug: str,
        allow_header_override: bool = True,
        strict_mode: bool = False,
        trusted_hosts: Iterable[str] = (),
    ) -> None:
        self._registry = registry
        self._reporter = reporter
        self._default_city_slug = default_city_slug
        self._allow_header_override = allow_header_override
        self._strict_mode = strict_mode
        self._trusted_hosts = tuple(trusted_hosts)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        registry: TenantRegistry,
        reporter: TenantIncidentReporter,
    ) -> TenantResolver:
        return cls(
            registry,
            reporter,
            default_city_slug=settings.tenancy_default_city_slug,
            allow_header_override=settings.tenancy_allow_header_override,
            strict_mode=settings.tenancy_strict_mode,
            trusted_hosts=settings.tenancy_trusted_hosts,
        )

    async def ensure_host_trusted(self, host: str) -> None:
        """Reject hosts that are neither whitelisted nor city domains.

        Raises:
            HostNotTrustedError: host unknown.
        """
        if host_matches(host, self._trusted_hosts):
            return
        if await self._registry.is_known_domain(host):
            return
        logger.warning("tenant_host_not_trusted", host=host)
        raise HostNotTrustedError(host)

    async def resolve(
        self,
        host: str,
        path: str,
        header: str | None,
        *,
        request_id: str | None = None,
    ) -> Resolution:
        """Resolve the tenant for ``(host, path, header)``.

        Raises:
            HostNotTrustedError: host is not trusted.
            TenantNotFoundError: nothing matched and the default city
                is missing, inactive or disabled by strict mode.
        """
        host = normalize_host(host)
        await self.ensure_host_trusted(host)

        header_slug = normalize_slug(header) if header else None
        if not self._allow_header_override:
            header_slug = None
        path_slug = slug_from_path(path)

        resolution = await self._match(host, header_slug, path_slug)
        if resolution is None:
            resolution = await self._fallback(
                host, path, header_slug, path_slug, request_id
            )

        if header_slug and path_slug and header_slug != path_slug:
            await self._reporter.record_header_path_mismatch(
                host=host,
                path=path,
                header_slug=header_slug,
                path_slug=path_slug,
                resolved_city_id=resolution.city.id,
                resolved_city_slug=resolution.city.slug,
                request_id=request_id,
            )

        return resolution

    async def resolve_and_bind(
        self,
        context: TenantContext,
        host: str,
        path: str,
        header: str | None,
        *,
        request_id: str | None = None,
    ) -> Resolution:
        resolution = await self.resolve(host, path, header, request_id=request_id)
        context.bind(resolution.city, resolution.source)
        logger.debug(
            "tenant_resolved",
            city_slug=resolution.city.slug,
            source=str(resolution.source),
        )
        return resolution

    async def _match(
        self,
        host: str,
        header_slug: str | None,
        path_slug: str | None,
    ) -> Resolution | None:
        if header_slug:
            city = await self._registry.get_active_by_slug(header_slug)
            if city is not None:
                return Resolution(city, ResolutionSource.HEADER, header_slug, path_slug)

        city = await self._registry.get_by_domain(host)
        if city is not None:
            return Resolution(city, ResolutionSource.DOMAIN, header_slug, path_slug)

        if path_slug:
            city = await self._registry.get_active_by_slug(path_slug)
            if city is not None:
                return Resolution(city, ResolutionSource.PATH, header_slug, path_slug)

        return None

    async def _fallback(
        self,
        host: str,
        path: str,
        header_slug: str | None,
        path_slug: str | None,
        request_id: str | None,
    ) -> Resolution:
        city = None
        if not self._strict_mode:
            city = await self._registry.get_active_by_slug(self._default_city_slug)

        if city is None:
            await self._reporter.record(
                IncidentType.RESOLUTION_FAILED,
                {
                    "host": host,
                    "path": path,
                    "x_city": header_slug,
                    "path_city": path_slug,
                    "default_city_slug": self._default_city_slug,
                    "strict_mode": self._strict_mode,
                },
                source="tenant_context",
                request_id=request_id,
            )
            raise TenantNotFoundError(f"no active city for host {host!r}")

        return Resolution(city, ResolutionSource.FALLBACK, header_slug, path_slug)


def require_explicit_tenant(context: TenantContext) -> City:
    """Guard for tenant-scoped mutations.

    Raises:
        TenantRequiredError: tenant unbound or resolved only by fallback.
    """
    if context.city is None or context.source == ResolutionSource.FALLBACK:
        raise TenantRequiredError()
    return context.city
