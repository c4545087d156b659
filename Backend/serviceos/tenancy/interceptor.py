"""
Query interception and rewrite engine.

The single choke point every database operation passes through before it
reaches the store. One rewrite rule per Action:

    reads      merge {tenant: current} and {deleted_at: None} into the filter
    create     inject tenant id and creator/updater into the payload
    update     scope the target predicate like a read, stamp the updater
    delete     soft-deletable models: becomes an update setting deleted_at
               others (or hard delete under system override): physical delete
    restore    targets soft-deleted rows only, clears deleted_at

A tenant-scoped operation with no bound tenant and no system override
fails with MissingTenantContext; it is never widened to "all tenants".
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Sequence

from .audit import stamp_create, stamp_update
from .context import ExecutionContext, current
from .errors import (
    CrossTenantViolationAttempt,
    HardDeleteNotPermitted,
    MissingTenantContext,
    UnsupportedOperation,
)
from .operations import COMBINATORS, Action, Operation, RewrittenOperation
from .registry import TenantScopeDescriptor, TenantScopeRegistry, get_registry


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _short(tenant_id: Optional[str]) -> str:
    return f"{str(tenant_id)[:8]}..." if tenant_id else "-"


# ────────────────────────────────────────────────────────────────
# Tenant resolution and conflict checks
# ────────────────────────────────────────────────────────────────

def _check_filter_tenant(
    descriptor: TenantScopeDescriptor,
    where: Optional[Mapping[str, Any]],
    tenant_id: str,
) -> None:
    if not where:
        return
    for key, value in where.items():
        if key in COMBINATORS:
            clauses = value if isinstance(value, (list, tuple)) else [value]
            for clause in clauses:
                _check_filter_tenant(descriptor, clause, tenant_id)
        elif key == descriptor.tenant_column:
            if isinstance(value, Mapping) or str(value) != str(tenant_id):
                raise CrossTenantViolationAttempt(descriptor.model_name, tenant_id, value)


def _check_payload_tenant(
    descriptor: TenantScopeDescriptor,
    data: Any,
    tenant_id: str,
) -> None:
    items = [data] if isinstance(data, Mapping) else list(data or [])
    for item in items:
        if not isinstance(item, Mapping):
            continue
        value = item.get(descriptor.tenant_column)
        if value is not None and str(value) != str(tenant_id):
            raise CrossTenantViolationAttempt(descriptor.model_name, tenant_id, value)


def _resolve_tenant(
    descriptor: TenantScopeDescriptor,
    operation: Operation,
    ctx: Optional[ExecutionContext],
) -> Optional[str]:
    """Tenant id to scope by, or None when no tenant filter applies."""
    if not descriptor.tenant_scoped:
        return None
    if ctx is not None and ctx.system_override:
        return None
    if ctx is None or ctx.tenant_id is None:
        logger.warning(
            "Rejected %s.%s: no tenant context bound",
            operation.model,
            operation.action.value,
        )
        raise MissingTenantContext(
            f"{operation.model}.{operation.action.value} requires a tenant context "
            f"(bind one with with_context or use with_system_context)",
            model=operation.model,
        )

    _check_filter_tenant(descriptor, operation.where, ctx.tenant_id)
    _check_payload_tenant(descriptor, operation.data, ctx.tenant_id)
    return ctx.tenant_id


def _scoped_where(
    operation: Operation,
    descriptor: TenantScopeDescriptor,
    tenant_id: Optional[str],
    only_deleted: bool = False,
) -> dict[str, Any]:
    where = dict(operation.where or {})
    if tenant_id is not None:
        where[descriptor.tenant_column] = tenant_id

    if descriptor.supports_soft_delete:
        column = descriptor.deleted_at_column
        if only_deleted:
            where[column] = {"not": None}
        elif not operation.include_deleted and column not in where:
            # An explicit deleted-at key means the caller asked for deleted rows
            where[column] = None
    return where


def _require_mapping(operation: Operation) -> Mapping[str, Any]:
    if operation.data is None:
        return {}
    if not isinstance(operation.data, Mapping):
        raise TypeError(f"{operation.model}.{operation.action.value} expects a mapping payload")
    return operation.data


# ────────────────────────────────────────────────────────────────
# Rewrite rules
# ────────────────────────────────────────────────────────────────

def _rewrite_read(op, descriptor, ctx, tenant_id, clock) -> RewrittenOperation:
    return RewrittenOperation(
        model=op.model,
        action=op.action,
        original_action=op.action,
        where=_scoped_where(op, descriptor, tenant_id),
        data=None,
        shape=op.shape,
        tenant_id=tenant_id,
        system_override=bool(ctx and ctx.system_override),
    )


def _create_payload(op, descriptor, ctx, tenant_id, item: Mapping[str, Any]) -> dict[str, Any]:
    payload = dict(item)
    if descriptor.tenant_scoped:
        if tenant_id is not None:
            payload[descriptor.tenant_column] = tenant_id
        elif payload.get(descriptor.tenant_column) is None:
            # System override: the trusted caller must name the owning tenant
            raise MissingTenantContext(
                f"{op.model}.{op.action.value} under system override must set "
                f"{descriptor.tenant_column} explicitly",
                model=op.model,
            )
    return stamp_create(ctx, descriptor, payload)


def _rewrite_create(op, descriptor, ctx, tenant_id, clock) -> RewrittenOperation:
    data = _create_payload(op, descriptor, ctx, tenant_id, _require_mapping(op))
    return RewrittenOperation(
        model=op.model,
        action=Action.CREATE,
        original_action=op.action,
        where={},
        data=data,
        shape=op.shape,
        tenant_id=tenant_id,
        system_override=bool(ctx and ctx.system_override),
    )


def _rewrite_create_many(op, descriptor, ctx, tenant_id, clock) -> RewrittenOperation:
    if op.data is None or isinstance(op.data, Mapping) or not isinstance(op.data, Sequence):
        raise TypeError(f"{op.model}.create_many expects a sequence of payloads")
    items = [_create_payload(op, descriptor, ctx, tenant_id, item) for item in op.data]
    return RewrittenOperation(
        model=op.model,
        action=Action.CREATE_MANY,
        original_action=op.action,
        where={},
        data=items,
        shape=op.shape,
        tenant_id=tenant_id,
        system_override=bool(ctx and ctx.system_override),
    )


def _rewrite_update(op, descriptor, ctx, tenant_id, clock) -> RewrittenOperation:
    payload = dict(_require_mapping(op))
    if tenant_id is not None:
        # Already checked equal to the bound tenant; rows never change owner here
        payload.pop(descriptor.tenant_column, None)
    return RewrittenOperation(
        model=op.model,
        action=op.action,
        original_action=op.action,
        where=_scoped_where(op, descriptor, tenant_id),
        data=stamp_update(ctx, descriptor, payload),
        shape=op.shape,
        tenant_id=tenant_id,
        system_override=bool(ctx and ctx.system_override),
    )


def _rewrite_delete(op, descriptor, ctx, tenant_id, clock) -> RewrittenOperation:
    system = bool(ctx and ctx.system_override)
    if op.hard_delete and descriptor.supports_soft_delete and not system:
        raise HardDeleteNotPermitted(
            f"{op.model}: hard delete of a soft-deletable model requires run_as_system",
            model=op.model,
        )

    where = _scoped_where(op, descriptor, tenant_id)
    if descriptor.supports_soft_delete and not op.hard_delete:
        action = Action.UPDATE if op.action == Action.DELETE else Action.UPDATE_MANY
        data = stamp_update(ctx, descriptor, {descriptor.deleted_at_column: clock()})
        return RewrittenOperation(
            model=op.model,
            action=action,
            original_action=op.action,
            where=where,
            data=data,
            shape=op.shape,
            tenant_id=tenant_id,
            system_override=system,
        )

    return RewrittenOperation(
        model=op.model,
        action=op.action,
        original_action=op.action,
        where=where,
        data=None,
        shape=op.shape,
        tenant_id=tenant_id,
        system_override=system,
        physical_delete=True,
    )


def _rewrite_restore(op, descriptor, ctx, tenant_id, clock) -> RewrittenOperation:
    if not descriptor.supports_soft_delete:
        raise UnsupportedOperation(f"{op.model} does not support soft delete", model=op.model)
    return RewrittenOperation(
        model=op.model,
        action=Action.UPDATE,
        original_action=op.action,
        where=_scoped_where(op, descriptor, tenant_id, only_deleted=True),
        data=stamp_update(ctx, descriptor, {descriptor.deleted_at_column: None}),
        shape=op.shape,
        tenant_id=tenant_id,
        system_override=bool(ctx and ctx.system_override),
    )


_RULES = {
    Action.FIND_MANY: _rewrite_read,
    Action.FIND_FIRST: _rewrite_read,
    Action.COUNT: _rewrite_read,
    Action.AGGREGATE: _rewrite_read,
    Action.GROUP_BY: _rewrite_read,
    Action.CREATE: _rewrite_create,
    Action.CREATE_MANY: _rewrite_create_many,
    Action.UPDATE: _rewrite_update,
    Action.UPDATE_MANY: _rewrite_update,
    Action.DELETE: _rewrite_delete,
    Action.DELETE_MANY: _rewrite_delete,
    Action.RESTORE: _rewrite_restore,
}

_missing_rules = set(Action) - set(_RULES)
if _missing_rules:
    raise RuntimeError(f"No rewrite rule for actions: {sorted(a.value for a in _missing_rules)}")


def _log_tag(rewritten: RewrittenOperation) -> str:
    original = rewritten.original_action
    if original.is_read:
        return "READ"
    if original in (Action.DELETE, Action.DELETE_MANY) and not rewritten.physical_delete:
        return "SOFT_DELETE" if original == Action.DELETE else "SOFT_DELETE_MANY"
    return original.name


# ────────────────────────────────────────────────────────────────
# Entry point
# ────────────────────────────────────────────────────────────────

def intercept(
    operation: Operation,
    registry: Optional[TenantScopeRegistry] = None,
    *,
    clock: Optional[Clock] = None,
) -> RewrittenOperation:
    """
    Rewrite `operation` for the execution context bound right now.

    Raises:
        UnknownModel: model not in the registry
        MissingTenantContext: tenant-scoped operation without tenant or override
        CrossTenantViolationAttempt: filter or payload names another tenant
        HardDeleteNotPermitted: hard delete of a soft-deletable model outside override
        UnsupportedOperation: restore on a model without soft delete
    """
    registry = registry or get_registry()
    descriptor = registry.describe(operation.model)
    ctx = current()

    tenant_id = _resolve_tenant(descriptor, operation, ctx)
    rule = _RULES[operation.action]
    rewritten = rule(operation, descriptor, ctx, tenant_id, clock or utcnow)

    logger.debug(
        "[%s] %s.%s - Tenant: %s%s",
        _log_tag(rewritten),
        operation.model,
        operation.action.value,
        _short(tenant_id),
        " (system override)" if rewritten.system_override else "",
    )
    return rewritten
