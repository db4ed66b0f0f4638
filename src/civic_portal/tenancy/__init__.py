"""Tenant resolution, scoping and enforcement."""

from civic_portal.tenancy.context import (
    ExecutionOrigin,
    ResolutionSource,
    TenantContext,
    tenant_key,
)
from civic_portal.tenancy.incidents import TenantIncidentReporter
from civic_portal.tenancy.registry import TenantRegistry
from civic_portal.tenancy.resolver import TenantResolver, require_explicit_tenant
from civic_portal.tenancy.scope import TenantScope

__all__ = [
    "ExecutionOrigin",
    "ResolutionSource",
    "TenantContext",
    "TenantIncidentReporter",
    "TenantRegistry",
    "TenantResolver",
    "TenantScope",
    "require_explicit_tenant",
    "tenant_key",
]
