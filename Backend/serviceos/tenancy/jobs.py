"""
Scheduled job binding and retention maintenance.

Jobs have no HTTP request to take an identity from, so they bind their own
context: run_job() for one tenant, run_for_each_tenant() to fan a job out
over every active tenant (each run inside its own tenant context), and
purge_soft_deleted() for the trash retention sweep.

Usage:
    async def close_stale_quotes():
        await client.model("BaoGia").update_many({"trang_thai": "MOI"}, {"trang_thai": "HET_HAN"})

    report = await run_for_each_tenant(client, close_stale_quotes, name="close_stale_quotes")
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..core.config import get_settings
from .client import TenantClient
from .context import ContextSource, ExecutionContext, arun, with_system_context
from .errors import TenancyError, UnsupportedOperation
from .interceptor import Clock, utcnow


logger = logging.getLogger(__name__)

T = TypeVar("T")

ACTIVE_TENANT_STATUS = 1


@dataclass
class JobReport:
    """Outcome of one fan-out run."""

    name: str
    results: dict[str, Any] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def tenants_processed(self) -> int:
        return len(self.results) + len(self.failures)

    @property
    def has_errors(self) -> bool:
        return bool(self.failures)


async def run_job(
    tenant_id: str,
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    actor_id: Optional[str] = None,
    **kwargs: Any,
) -> T:
    """Await `fn` inside a job-sourced context for `tenant_id`."""
    ctx = ExecutionContext(actor_id=actor_id, tenant_id=tenant_id, source=ContextSource.JOB)
    return await arun(ctx, fn, *args, **kwargs)


async def list_active_tenants(client: TenantClient) -> list[str]:
    rows = await with_system_context(
        client.model("DoanhNghiep").find_many,
        {"trang_thai": ACTIVE_TENANT_STATUS},
        columns=["id"],
        order_by={"ngay_tao": "asc"},
        reason="enumerate active tenants for scheduled job",
    )
    return [row["id"] for row in rows]


async def run_for_each_tenant(
    client: TenantClient,
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    name: str,
    **kwargs: Any,
) -> JobReport:
    """
    Run `fn` once per active tenant, sequentially.

    A failing tenant is logged and recorded in the report and the run moves
    on to the next tenant. Tenancy errors are programming errors and stop
    the whole run.
    """
    report = JobReport(name=name)
    tenant_ids = await list_active_tenants(client)
    logger.info("Job %s started for %d tenants", name, len(tenant_ids))

    for tenant_id in tenant_ids:
        try:
            report.results[tenant_id] = await run_job(tenant_id, fn, *args, **kwargs)
        except TenancyError:
            raise
        except Exception as e:
            logger.exception("Job %s failed for tenant %s...", name, tenant_id[:8])
            report.failures[tenant_id] = str(e)

    logger.info(
        "Job %s finished: %d succeeded, %d failed",
        name,
        len(report.results),
        len(report.failures),
    )
    return report


# ────────────────────────────────────────────────────────────────
# Retention
# ────────────────────────────────────────────────────────────────

async def purge_soft_deleted(
    client: TenantClient,
    model: str,
    *,
    retention_days: Optional[int] = None,
    clock: Optional[Clock] = None,
) -> int:
    """
    Physically remove rows of `model` soft-deleted before the retention cutoff.

    Runs across all tenants through the escape hatch with an explicit
    hard-delete intent.

    Returns:
        Number of rows removed
    """
    descriptor = client.registry.describe(model)
    if not descriptor.supports_soft_delete:
        raise UnsupportedOperation(f"{model} does not support soft delete", model=model)

    days = retention_days if retention_days is not None else get_settings().soft_delete_retention_days
    cutoff = (clock or utcnow)() - timedelta(days=days)
    removed = await with_system_context(
        client.model(model).delete_many,
        {descriptor.deleted_at_column: {"lt": cutoff}},
        hard=True,
        reason=f"retention purge of {model} deleted before {cutoff.isoformat()}",
    )
    logger.info("Purged %d soft-deleted %s rows older than %d days", removed, model, days)
    return removed


async def purge_all_soft_deleted(
    client: TenantClient,
    *,
    retention_days: Optional[int] = None,
    clock: Optional[Clock] = None,
) -> dict[str, int]:
    """Retention sweep over every soft-deletable tenant-scoped model."""
    return {
        descriptor.model_name: await purge_soft_deleted(
            client, descriptor.model_name, retention_days=retention_days, clock=clock
        )
        for descriptor in client.registry
        if descriptor.supports_soft_delete and descriptor.tenant_scoped
    }


__all__ = [
    "JobReport",
    "run_job",
    "list_active_tenants",
    "run_for_each_tenant",
    "purge_soft_deleted",
    "purge_all_soft_deleted",
]
