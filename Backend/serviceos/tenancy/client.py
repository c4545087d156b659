"""
Tenant-isolated data access client.

One TenantClient is created per process and shared by every request and
job. It holds no per-request state: each call reads the execution context
bound at that moment, runs the operation through the interceptor, and only
then touches the engine.

Usage:
    client = TenantClient(build_engine())

    async def list_customers():
        return await client.model("KhachHang").find_many(order_by={"ho_ten": "asc"})

    await with_context(user_id, tenant_id, "ADMIN", list_customers)
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional, Sequence, Union

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from .context import current
from .errors import CrossTenantViolationAttempt, MissingTenantContext
from .interceptor import Clock, intercept
from .operations import Action, Filter, Operation, Payload, QueryShape
from .queries import execute_rewritten
from .registry import TenantScopeRegistry, get_registry


logger = logging.getLogger(__name__)

OrderBy = Union[Mapping[str, str], Sequence[tuple[str, str]], None]


def _order_by(order_by: OrderBy) -> tuple[tuple[str, str], ...]:
    if not order_by:
        return ()
    if isinstance(order_by, Mapping):
        return tuple(order_by.items())
    return tuple(order_by)


def _aggregates(
    sum: Sequence[str] = (),
    avg: Sequence[str] = (),
    min: Sequence[str] = (),
    max: Sequence[str] = (),
    count: Union[bool, Sequence[str]] = False,
) -> dict[str, list[str]]:
    aggregates = {
        kind: list(names)
        for kind, names in (("_sum", sum), ("_avg", avg), ("_min", min), ("_max", max))
        if names
    }
    if count is True:
        aggregates["_count"] = ["_all"]
    elif count:
        aggregates["_count"] = list(count)
    return aggregates


class ModelDelegate:
    """Operations on one registered model, e.g. client.model("Kho")."""

    def __init__(self, client: "TenantClient", model: str):
        self._client = client
        self.model = model

    async def _run(self, action: Action, **fields: Any) -> Any:
        return await self._client.execute(Operation(model=self.model, action=action, **fields))

    # ────────────────────────────────────────────────────────────────
    # Reads
    # ────────────────────────────────────────────────────────────────

    async def find_many(
        self,
        where: Optional[Filter] = None,
        *,
        order_by: OrderBy = None,
        skip: Optional[int] = None,
        take: Optional[int] = None,
        columns: Optional[Sequence[str]] = None,
        include_deleted: bool = False,
    ) -> list[dict[str, Any]]:
        shape = QueryShape(order_by=_order_by(order_by), skip=skip, take=take, columns=columns)
        return await self._run(Action.FIND_MANY, where=where, shape=shape, include_deleted=include_deleted)

    async def find_first(
        self,
        where: Optional[Filter] = None,
        *,
        order_by: OrderBy = None,
        columns: Optional[Sequence[str]] = None,
        include_deleted: bool = False,
    ) -> Optional[dict[str, Any]]:
        shape = QueryShape(order_by=_order_by(order_by), columns=columns)
        return await self._run(Action.FIND_FIRST, where=where, shape=shape, include_deleted=include_deleted)

    async def count(self, where: Optional[Filter] = None, *, include_deleted: bool = False) -> int:
        return await self._run(Action.COUNT, where=where, include_deleted=include_deleted)

    async def aggregate(
        self,
        where: Optional[Filter] = None,
        *,
        sum: Sequence[str] = (),
        avg: Sequence[str] = (),
        min: Sequence[str] = (),
        max: Sequence[str] = (),
        count: Union[bool, Sequence[str]] = False,
        include_deleted: bool = False,
    ) -> dict[str, Any]:
        """
        Usage:
            totals = await client.model("PhieuThuChi").aggregate({"loai_phieu": "THU"}, sum=["so_tien"])
            totals["_sum"]["so_tien"]
        """
        shape = QueryShape(aggregates=_aggregates(sum, avg, min, max, count))
        return await self._run(Action.AGGREGATE, where=where, shape=shape, include_deleted=include_deleted)

    async def group_by(
        self,
        by: Sequence[str],
        where: Optional[Filter] = None,
        *,
        sum: Sequence[str] = (),
        avg: Sequence[str] = (),
        min: Sequence[str] = (),
        max: Sequence[str] = (),
        count: Union[bool, Sequence[str]] = False,
        order_by: OrderBy = None,
        include_deleted: bool = False,
    ) -> list[dict[str, Any]]:
        shape = QueryShape(
            by=tuple(by),
            aggregates=_aggregates(sum, avg, min, max, count),
            order_by=_order_by(order_by),
        )
        return await self._run(Action.GROUP_BY, where=where, shape=shape, include_deleted=include_deleted)

    # ────────────────────────────────────────────────────────────────
    # Writes
    # ────────────────────────────────────────────────────────────────

    async def create(self, data: Payload) -> dict[str, Any]:
        return await self._run(Action.CREATE, data=data)

    async def create_many(self, data: Sequence[Payload]) -> int:
        return await self._run(Action.CREATE_MANY, data=list(data))

    async def update(self, where: Filter, data: Payload, *, include_deleted: bool = False) -> dict[str, Any]:
        """Update exactly one row; RecordNotFound when the scoped filter matches none."""
        return await self._run(Action.UPDATE, where=where, data=data, include_deleted=include_deleted)

    async def update_many(self, where: Optional[Filter], data: Payload, *, include_deleted: bool = False) -> int:
        return await self._run(Action.UPDATE_MANY, where=where, data=data, include_deleted=include_deleted)

    async def delete(self, where: Filter, *, hard: bool = False) -> dict[str, Any]:
        """Soft delete one row when the model supports it. `hard` needs system override."""
        return await self._run(Action.DELETE, where=where, hard_delete=hard)

    async def delete_many(self, where: Optional[Filter] = None, *, hard: bool = False) -> int:
        return await self._run(Action.DELETE_MANY, where=where, hard_delete=hard)

    async def restore(self, where: Filter) -> dict[str, Any]:
        """Clear deleted-at on one soft-deleted row."""
        return await self._run(Action.RESTORE, where=where)


class TenantClient:
    """
    Process-wide entry point to the tenant-isolated store.

    Attributes:
        engine: Shared AsyncEngine (one connection pool for all tenants)
        registry: Tenant-scope registry; the application registry by default
    """

    def __init__(
        self,
        engine: AsyncEngine,
        registry: Optional[TenantScopeRegistry] = None,
        *,
        clock: Optional[Clock] = None,
        connection: Optional[AsyncConnection] = None,
    ):
        self.engine = engine
        self.registry = registry or get_registry()
        self._clock = clock
        self._connection = connection

    def model(self, name: str) -> ModelDelegate:
        """Raises UnknownModel right away for unregistered names."""
        self.registry.describe(name)
        return ModelDelegate(self, name)

    async def execute(self, operation: Operation) -> Any:
        rewritten = intercept(operation, self.registry, clock=self._clock)
        table = self.registry.describe(operation.model).table
        if self._connection is not None:
            return await execute_rewritten(self._connection, table, rewritten)
        async with self.engine.begin() as conn:
            return await execute_rewritten(conn, table, rewritten)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["TenantClient"]:
        """
        Run several operations atomically.

        The yielded client shares one connection and one transaction; every
        operation on it is still intercepted with the context current at the
        time of the call. Nested use joins the outer transaction.

        Usage:
            async with client.transaction() as tx:
                await tx.model("TonKho").update({"id": stock_id}, {"so_luong": 5})
                await tx.model("LichSuKho").create({...})
        """
        if self._connection is not None:
            yield self
            return
        async with self.engine.begin() as conn:
            yield TenantClient(self.engine, self.registry, clock=self._clock, connection=conn)

    async def execute_raw(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """
        Run a raw SQL statement with the bound tenant available as :tenant_id.

        Raw SQL is not rewritten. The statement must filter by :tenant_id
        itself; under system override :tenant_id is NULL.

        Returns:
            List of row dicts for statements returning rows, else the rowcount
        """
        ctx = current()
        if ctx is None or (ctx.tenant_id is None and not ctx.system_override):
            logger.warning("Rejected raw SQL: no tenant context bound")
            raise MissingTenantContext("execute_raw requires a tenant context or system override")

        bound = dict(params or {})
        requested = bound.get("tenant_id")
        if requested is not None and ctx.tenant_id is not None and str(requested) != str(ctx.tenant_id):
            raise CrossTenantViolationAttempt("<raw>", ctx.tenant_id, requested)
        if not ctx.system_override or "tenant_id" not in bound:
            bound["tenant_id"] = ctx.tenant_id

        logger.debug("[RAW] Tenant: %s", f"{ctx.tenant_id[:8]}..." if ctx.tenant_id else "-")
        if self._connection is not None:
            return await self._execute_text(self._connection, sql, bound)
        async with self.engine.begin() as conn:
            return await self._execute_text(conn, sql, bound)

    @staticmethod
    async def _execute_text(conn: AsyncConnection, sql: str, params: dict[str, Any]) -> Any:
        result = await conn.execute(text(sql), params)
        if result.returns_rows:
            return [dict(row) for row in result.mappings().all()]
        return result.rowcount

    async def dispose(self) -> None:
        await self.engine.dispose()


__all__ = ["TenantClient", "ModelDelegate"]
