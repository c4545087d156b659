"""
Multi-tenancy package for ServiceOS.

Every database operation issued by business modules goes through this
package, which scopes it to the tenant of the current execution context.

Modules:
    context: Execution context store and the run_as_system escape hatch
    config: Column convention and tenant-scoped / global model manifest
    registry: Per-model scoping metadata built from the table mappings
    operations: Operation values and actions
    interceptor: Rewrite engine (tenant filter, soft delete, audit)
    audit: Creator / updater stamping
    queries: SQLAlchemy statement building for rewritten operations
    client: Shared TenantClient used by all requests and jobs
    middleware: HTTP binding from the bearer JWT
    jobs: Scheduled job binding and retention purge
"""

from .context import (
    ContextSource,
    ExecutionContext,
    current,
    require_current,
    current_tenant_id,
    current_actor_id,
    bind,
    run,
    arun,
    run_as_system,
    arun_as_system,
    with_context,
    with_system_context,
    propagate,
)
from .errors import (
    TenancyError,
    MissingTenantContext,
    UnknownModel,
    CrossTenantViolationAttempt,
    ContextAlreadyBound,
    HardDeleteNotPermitted,
    UnsupportedOperation,
    RegistryConfigurationError,
    RecordNotFound,
)
from .operations import Action, Operation, QueryShape, RewrittenOperation
from .registry import TenantScopeDescriptor, TenantScopeRegistry, get_registry
from .interceptor import intercept
from .client import TenantClient, ModelDelegate

__all__ = [
    # Context
    "ContextSource",
    "ExecutionContext",
    "current",
    "require_current",
    "current_tenant_id",
    "current_actor_id",
    "bind",
    "run",
    "arun",
    "run_as_system",
    "arun_as_system",
    "with_context",
    "with_system_context",
    "propagate",
    # Errors
    "TenancyError",
    "MissingTenantContext",
    "UnknownModel",
    "CrossTenantViolationAttempt",
    "ContextAlreadyBound",
    "HardDeleteNotPermitted",
    "UnsupportedOperation",
    "RegistryConfigurationError",
    "RecordNotFound",
    # Operations
    "Action",
    "Operation",
    "QueryShape",
    "RewrittenOperation",
    # Registry
    "TenantScopeDescriptor",
    "TenantScopeRegistry",
    "get_registry",
    # Engine
    "intercept",
    "TenantClient",
    "ModelDelegate",
]
