"""Request-scoped tenant binding.

A ``TenantContext`` is created fresh for every request (or job, or CLI
run) and passed explicitly to everything that needs the active city.
It is never stored in a module global.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from enum import StrEnum
from typing import Any

from civic_portal.config import get_settings
from civic_portal.errors import MissingTenantError
from civic_portal.storage.orm import City


class ResolutionSource(StrEnum):
    """How the active city was determined."""

    HEADER = "header"
    PATH = "path"
    DOMAIN = "domain"
    SESSION_OVERRIDE = "session_override"
    FALLBACK = "fallback"
    FILAMENT_USER_LOCK = "filament_user_lock"
    QUEUE_JOB = "queue_job"


class ExecutionOrigin(StrEnum):
    """Where the code holding the context runs.

    Cross-tenant write checks only apply to ``HTTP``.
    """

    HTTP = "http"
    CONSOLE = "console"
    QUEUE = "queue"


class TenantContext:
    """Active city plus the resolution source for one unit of work."""

    __slots__ = ("_city", "_source", "origin")

    def __init__(self, origin: ExecutionOrigin = ExecutionOrigin.HTTP) -> None:
        self.origin = origin
        self._city: City | None = None
        self._source: ResolutionSource | None = None

    def __repr__(self) -> str:
        slug = self._city.slug if self._city is not None else None
        return (
            f"TenantContext(city={slug!r}, source={self._source}, "
            f"origin={self.origin})"
        )

    @property
    def city(self) -> City | None:
        return self._city

    @property
    def source(self) -> ResolutionSource | None:
        return self._source

    @property
    def city_id(self) -> uuid.UUID | None:
        return self._city.id if self._city is not None else None

    @property
    def is_bound(self) -> bool:
        return self._city is not None

    def bind(self, city: City, source: ResolutionSource) -> None:
        """Bind the resolved city. Allowed once per context.

        Raises:
            RuntimeError: context already bound; use ``rebind``.
        """
        if self._city is not None:
            raise RuntimeError("TenantContext is already bound; use rebind()")
        self._city = city
        self._source = source

    def rebind(self, city: City, source: ResolutionSource) -> City | None:
        """Replace the binding (actor policies, job restore).

        Returns:
            The previously bound city, if any.
        """
        previous = self._city
        self._city = city
        self._source = source
        return previous

    def clear(self) -> None:
        self._city = None
        self._source = None

    def require_city(self) -> City:
        if self._city is None:
            raise MissingTenantError("no tenant bound to the current context")
        return self._city


def _sort_recursive(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _sort_recursive(value[k]) for k in sorted(value)}
    if isinstance(value, list):
        return [_sort_recursive(v) for v in value]
    return value


def city_timezone(city: City) -> str:
    return city.timezone or get_settings().tenancy_default_timezone


def city_status(city: City) -> str:
    if city.status:
        return str(city.status)
    return "active" if city.active else "draft"


def brand_hash(city: City) -> str:
    """Deterministic SHA-256 of the city's brand payload."""
    brand = city.brand if isinstance(city.brand, dict) else {}
    payload = json.dumps(
        _sort_recursive(brand), ensure_ascii=False, separators=(",", ":")
    )
    return hashlib.sha256(payload.encode()).hexdigest()


def tenant_key(city: City) -> str:
    """Cache-drift fingerprint: ``slug|timezone|status|brand_hash``."""
    return f"{city.slug}|{city_timezone(city)}|{city_status(city)}|{brand_hash(city)}"
