"""
Audit stamping.

Pure functions of (context, descriptor, payload) -> new payload. They hold
no state and never fabricate an actor: without one the stamp is None.
"""

from typing import Any, Mapping, Optional

from .context import ExecutionContext
from .registry import TenantScopeDescriptor


def _stamp(
    payload: dict[str, Any],
    column: Optional[str],
    context: Optional[ExecutionContext],
) -> None:
    if column is None:
        return
    actor_id = context.actor_id if context else None
    trusted = context is not None and context.system_override
    # Trusted internal call sites may record the originating actor themselves
    if trusted and actor_id is None and payload.get(column) is not None:
        return
    payload[column] = actor_id


def stamp_create(
    context: Optional[ExecutionContext],
    descriptor: TenantScopeDescriptor,
    payload: Mapping[str, Any],
) -> dict[str, Any]:
    """Creator and updater both become the current actor."""
    enriched = dict(payload)
    _stamp(enriched, descriptor.creator_column, context)
    _stamp(enriched, descriptor.updater_column, context)
    return enriched


def stamp_update(
    context: Optional[ExecutionContext],
    descriptor: TenantScopeDescriptor,
    payload: Mapping[str, Any],
) -> dict[str, Any]:
    """Only the updater changes; a caller-supplied creator is dropped."""
    enriched = dict(payload)
    if descriptor.creator_column:
        enriched.pop(descriptor.creator_column, None)
    _stamp(enriched, descriptor.updater_column, context)
    return enriched
