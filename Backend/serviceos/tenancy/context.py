"""
Execution context store for tenant isolation.

This module holds the "who is asking and on whose behalf" data for one
logical unit of work: an HTTP request, a scheduled job, or an explicitly
elevated internal operation.

The binding lives in a ContextVar, so it:
    - follows the logical flow across await points
    - is inherited by tasks created inside the binding (asyncio copies the
      context at task creation) and by asyncio.to_thread calls
    - is never visible to sibling requests sharing the same event loop,
      engine or connection pool
    - ends exactly when the owning run()/arun() exits, whether it returns,
      raises or is cancelled

There is no module-level "current tenant" variable anywhere else.
"""

import contextvars
import functools
import inspect
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar

from .errors import ContextAlreadyBound, MissingTenantContext


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ContextSource(str, Enum):
    """Who bound the context (for audit logging)."""

    HTTP = "http"           # Bound by the request middleware from the JWT
    JOB = "job"             # Bound by the job runner for one tenant
    SYSTEM = "system"       # Escape hatch: run_as_system()
    INTERNAL = "internal"   # Bound explicitly by internal code or tests


@dataclass(frozen=True)
class ExecutionContext:
    """
    Immutable identity of the current logical operation.

    Attributes:
        actor_id: User performing the operation (audit stamping), may be None
        tenant_id: Tenant (doanh nghiep) whose rows the operation may touch
        role: Role claim of the actor (vai_tro)
        system_override: True only inside run_as_system(); disables tenant filtering
        source: How this context was bound
    """

    actor_id: Optional[str] = None
    tenant_id: Optional[str] = None
    role: Optional[str] = None
    system_override: bool = False
    source: ContextSource = ContextSource.INTERNAL

    def __post_init__(self):
        for name in ("actor_id", "tenant_id"):
            value = getattr(self, name)
            if value is not None and not str(value).strip():
                raise ValueError(f"{name} must not be empty")
        if self.system_override and self.tenant_id is not None:
            raise ValueError("a system context must not carry a tenant_id")


_current_context: ContextVar[Optional[ExecutionContext]] = ContextVar(
    "serviceos_execution_context", default=None
)


# ────────────────────────────────────────────────────────────────
# Lookup
# ────────────────────────────────────────────────────────────────

def current() -> Optional[ExecutionContext]:
    """Return the context bound by the innermost enclosing run, or None."""
    return _current_context.get()


def require_current() -> ExecutionContext:
    """Like current() but raises MissingTenantContext when nothing is bound."""
    ctx = _current_context.get()
    if ctx is None:
        raise MissingTenantContext("No execution context is bound for this operation")
    return ctx


def current_tenant_id() -> Optional[str]:
    ctx = _current_context.get()
    return ctx.tenant_id if ctx else None


def current_actor_id() -> Optional[str]:
    ctx = _current_context.get()
    return ctx.actor_id if ctx else None


# ────────────────────────────────────────────────────────────────
# Binding
# ────────────────────────────────────────────────────────────────

@contextmanager
def bind(context: ExecutionContext) -> Iterator[ExecutionContext]:
    """
    Bind `context` as current for the extent of the with-block.

    A bound tenant context is immutable: binding a different non-system
    context on top of it raises ContextAlreadyBound. Only the escape hatch
    may shadow it. Inside a system context a tenant context may be bound.
    """
    existing = _current_context.get()
    if (
        existing is not None
        and not existing.system_override
        and not context.system_override
        and existing != context
    ):
        raise ContextAlreadyBound(
            f"Cannot rebind execution context (tenant={existing.tenant_id}) "
            f"to tenant={context.tenant_id}; use run_as_system for elevated work"
        )

    token = _current_context.set(context)
    try:
        yield context
    finally:
        _current_context.reset(token)


def run(context: ExecutionContext, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """
    Execute a synchronous `fn` with `context` bound for its full duration.

    Use arun() for coroutine functions; the binding of a sync run() would
    end before a returned coroutine ever executes.
    """
    if inspect.iscoroutinefunction(fn):
        raise TypeError(f"{fn!r} is a coroutine function, use arun()")
    with bind(context):
        result = fn(*args, **kwargs)
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise TypeError("run() received an awaitable result, use arun()")
        return result


async def arun(
    context: ExecutionContext,
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Await `fn` with `context` bound, including every task it spawns."""
    with bind(context):
        return await fn(*args, **kwargs)


# ────────────────────────────────────────────────────────────────
# System Override (escape hatch)
# ────────────────────────────────────────────────────────────────

def _system_context(reason: str) -> ExecutionContext:
    if not reason or not reason.strip():
        raise ValueError("run_as_system requires a reason describing the call site")
    existing = _current_context.get()
    ctx = ExecutionContext(
        actor_id=existing.actor_id if existing else None,
        tenant_id=None,
        role=existing.role if existing else None,
        system_override=True,
        source=ContextSource.SYSTEM,
    )
    logger.info(
        "System override entered: %s (actor=%s, caller_tenant=%s)",
        reason,
        ctx.actor_id,
        existing.tenant_id if existing else None,
    )
    return ctx


def run_as_system(fn: Callable[..., T], *args: Any, reason: str, **kwargs: Any) -> T:
    """
    Run a synchronous `fn` without tenant filtering.

    The override covers exactly the dynamic extent of `fn`. The actor is
    kept for audit stamping. Every call site must pass a `reason`.
    """
    return run(_system_context(reason), fn, *args, **kwargs)


async def arun_as_system(
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    reason: str,
    **kwargs: Any,
) -> T:
    """Async form of run_as_system()."""
    return await arun(_system_context(reason), fn, *args, **kwargs)


# ────────────────────────────────────────────────────────────────
# Published contract for business-module services
# ────────────────────────────────────────────────────────────────

async def with_context(
    actor_id: Optional[str],
    tenant_id: Optional[str],
    role: Optional[str],
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    source: ContextSource = ContextSource.INTERNAL,
    **kwargs: Any,
) -> T:
    """
    Scope one inbound request/job before any database access.

    Usage:
        result = await with_context(user_id, tenant_id, "ADMIN", service.list_customers)
    """
    ctx = ExecutionContext(actor_id=actor_id, tenant_id=tenant_id, role=role, source=source)
    return await arun(ctx, fn, *args, **kwargs)


async def with_system_context(
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    reason: str,
    **kwargs: Any,
) -> T:
    """
    Cross-tenant internal operation.

    Usage:
        await with_system_context(
            client.model("ThongBao").create, data,
            reason="notification for recipient in another tenant",
        )
    """
    return await arun_as_system(fn, *args, reason=reason, **kwargs)


def propagate(fn: Callable[..., T]) -> Callable[..., T]:
    """
    Wrap `fn` so it runs in a copy of the caller's context.

    Needed for plain executor.submit(); asyncio.to_thread and task creation
    already copy the context on their own.
    """
    snapshot = contextvars.copy_context()
    return functools.partial(snapshot.run, fn)


__all__ = [
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
]
