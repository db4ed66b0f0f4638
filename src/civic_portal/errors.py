"""Domain-specific exceptions for civic-portal.

Every tenancy failure carries a machine-readable ``code``, the HTTP
status it maps to, and a generic user-facing message (pt-BR). Internal
identifiers go to the logs, never into ``message``.
"""

from __future__ import annotations


class TenantError(Exception):
    """Base class for tenancy failures surfaced to the caller."""

    code: str = "TENANT_ERROR"
    status_code: int = 400
    message: str = "Falha ao determinar a cidade."

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail
        super().__init__(detail or self.message)


class HostNotTrustedError(TenantError):
    """Request host is neither whitelisted nor a known city domain."""

    code = "HOST_NOT_TRUSTED"
    message = "Host não autorizado."


class TenantNotFoundError(TenantError):
    """No active city could be resolved, fallback included."""

    code = "CITY_INACTIVE"
    message = "O serviço não está disponível para esta localidade."


class TenantRequiredError(TenantError):
    """Route demands an explicit tenant but only the fallback matched."""

    code = "TENANT_REQUIRED"
    message = "Selecione uma cidade para continuar."


class TenantViolationError(TenantError):
    """A write would break tenant isolation. Never retried."""

    code = "TENANT_VIOLATION"
    status_code = 422
    message = "Operação não permitida para esta cidade."


class CrossTenantWriteError(TenantViolationError):
    """Entity ``city_id`` differs from the bound tenant."""

    code = "TENANT_MISMATCH"


class MissingTenantError(TenantViolationError):
    """Tenant-owned entity would be created without a city."""

    code = "TENANT_MISSING"


class SubRegionMismatchError(TenantViolationError):
    """Referenced bairro belongs to another city."""

    code = "BAIRRO_CITY_MISMATCH"
    message = "O bairro informado não pertence a esta cidade."


class UserRestrictedError(TenantError):
    """An active moderation restriction blocks the action."""

    code = "USER_RESTRICTED"
    status_code = 403
    message = "Sua conta está temporariamente restrita para esta ação."

    def __init__(self, restriction_id: object, detail: str | None = None) -> None:
        self.restriction_id = restriction_id
        super().__init__(detail)


class TenantJobContextError(RuntimeError):
    """Tenant-aware background job cannot restore its city."""
