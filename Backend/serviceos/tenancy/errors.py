"""
Errors raised by the tenant-isolated data access layer.

All of these are programmer-facing. They are never retried, never
downgraded to a permissive default and never logged-and-ignored.
Storage errors from SQLAlchemy are not wrapped and reach the caller as-is.
"""

from typing import Any, Optional


class TenancyError(Exception):
    """Base class for tenancy layer errors."""

    def __init__(self, message: str, model: Optional[str] = None):
        self.message = message
        self.model = model
        super().__init__(message)


class MissingTenantContext(TenancyError):
    """A tenant-scoped operation ran with no tenant and no system override."""


class UnknownModel(TenancyError):
    """The operation targets a model the registry does not know."""

    def __init__(self, model: str):
        super().__init__(f"Model is not registered for tenant scoping: {model}", model=model)


class CrossTenantViolationAttempt(TenancyError):
    """The caller's filter or payload names a tenant other than the bound one."""

    def __init__(self, model: str, bound_tenant_id: str, requested: Any):
        self.bound_tenant_id = bound_tenant_id
        self.requested = requested
        super().__init__(
            f"{model}: operation names tenant {requested!r} "
            f"but the bound tenant is {bound_tenant_id!r}",
            model=model,
        )


class ContextAlreadyBound(TenancyError):
    """A different context was bound while a tenant context is current."""


class HardDeleteNotPermitted(TenancyError):
    """Physical delete of a soft-deletable model outside system override."""


class UnsupportedOperation(TenancyError):
    """The action does not apply to this model (e.g. restore without soft delete)."""


class RegistryConfigurationError(TenancyError):
    """The schema manifest or a table violates the tenant-scoping convention."""


class RecordNotFound(TenancyError, LookupError):
    """A single-row write matched no row after tenant and soft-delete scoping."""
