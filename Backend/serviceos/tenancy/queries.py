"""
Statement building and execution for rewritten operations.

Turns a RewrittenOperation into SQLAlchemy Core statements against the
model's table and runs them on an AsyncConnection. Nothing in here looks at
the execution context: by the time an operation arrives, the interceptor
has already written the tenant and soft-delete scoping into its filter and
payload.

Usage:
    rewritten = intercept(Operation("KhachHang", Action.FIND_MANY))
    rows = await execute_rewritten(conn, descriptor.table, rewritten)
"""

import operator
from typing import Any, Callable, Mapping, Optional, Sequence

from sqlalchemy import Select, Table, and_, delete, func, insert, not_, or_, select, true, update
from sqlalchemy.engine import RowMapping
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy.sql.elements import ColumnElement

from .errors import RecordNotFound
from .operations import Action, QueryShape, RewrittenOperation


def _not(column, value):
    return column.isnot(None) if value is None else column != value


def _equals(column, value):
    return column.is_(None) if value is None else column == value


_OPERATORS: dict[str, Callable[[Any, Any], ColumnElement]] = {
    "equals": _equals,
    "not": _not,
    "in": lambda column, value: column.in_(list(value)),
    "not_in": lambda column, value: column.not_in(list(value)),
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
    "contains": lambda column, value: column.contains(value),
    "startswith": lambda column, value: column.startswith(value),
}

_AGGREGATES = {
    "_sum": func.sum,
    "_avg": func.avg,
    "_min": func.min,
    "_max": func.max,
    "_count": func.count,
}


# ────────────────────────────────────────────────────────────────
# Filters
# ────────────────────────────────────────────────────────────────

def _column(table: Table, name: str):
    try:
        return table.c[name]
    except KeyError:
        raise ValueError(f"Unknown column {name!r} on table {table.name}") from None


def _as_list(value: Any) -> list:
    return list(value) if isinstance(value, (list, tuple)) else [value]


def _conjunction(clauses: Sequence[ColumnElement]) -> ColumnElement:
    if not clauses:
        return true()
    return and_(*clauses)


def build_where(table: Table, where: Optional[Mapping[str, Any]]) -> list[ColumnElement]:
    """
    Translate a filter dictionary into WHERE clauses (implicitly ANDed).

    Usage:
        stmt = select(table).where(*build_where(table, {"so_luong": {"gt": 0}}))
    """
    clauses: list[ColumnElement] = []
    for key, value in (where or {}).items():
        if key == "AND":
            clauses.append(_conjunction([_conjunction(build_where(table, c)) for c in _as_list(value)]))
        elif key == "OR":
            clauses.append(or_(*[_conjunction(build_where(table, c)) for c in _as_list(value)]))
        elif key == "NOT":
            clauses.append(not_(_conjunction([_conjunction(build_where(table, c)) for c in _as_list(value)])))
        else:
            column = _column(table, key)
            if isinstance(value, Mapping):
                for op_name, operand in value.items():
                    try:
                        clauses.append(_OPERATORS[op_name](column, operand))
                    except KeyError:
                        raise ValueError(f"Unknown filter operator {op_name!r} for {key}") from None
            else:
                clauses.append(_equals(column, value))
    return clauses


# ────────────────────────────────────────────────────────────────
# Reads
# ────────────────────────────────────────────────────────────────

def scoped_select(table: Table, rewritten: RewrittenOperation) -> Select:
    """SELECT for find_many/find_first, filter already scoped by the interceptor."""
    shape = rewritten.shape
    columns = [_column(table, name) for name in shape.columns] if shape.columns else list(table.c)
    stmt = select(*columns).where(*build_where(table, rewritten.where))
    for name, direction in shape.order_by:
        column = _column(table, name)
        stmt = stmt.order_by(column.desc() if direction.lower() == "desc" else column.asc())
    if shape.skip:
        stmt = stmt.offset(shape.skip)
    if shape.take is not None:
        stmt = stmt.limit(shape.take)
    return stmt


def _aggregate_columns(table: Table, shape: QueryShape) -> list:
    labeled = []
    for kind, names in shape.aggregates.items():
        fn = _AGGREGATES.get(kind)
        if fn is None:
            raise ValueError(f"Unknown aggregate {kind!r}")
        for name in names:
            if kind == "_count" and name == "_all":
                labeled.append(func.count().label(f"{kind}__{name}"))
            else:
                labeled.append(fn(_column(table, name)).label(f"{kind}__{name}"))
    return labeled


def _nest_aggregates(row: Mapping[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in row.items():
        if "__" in key and key.startswith("_"):
            kind, name = key.split("__", 1)
            result.setdefault(kind, {})[name] = value
        else:
            result[key] = value
    return result


def _to_dict(row: RowMapping) -> dict[str, Any]:
    return dict(row)


async def _read(conn: AsyncConnection, table: Table, rewritten: RewrittenOperation) -> Any:
    clauses = build_where(table, rewritten.where)
    shape = rewritten.shape

    if rewritten.action == Action.FIND_MANY:
        result = await conn.execute(scoped_select(table, rewritten))
        return [_to_dict(row) for row in result.mappings().all()]

    if rewritten.action == Action.FIND_FIRST:
        stmt = scoped_select(table, rewritten).limit(1)
        row = (await conn.execute(stmt)).mappings().first()
        return _to_dict(row) if row is not None else None

    if rewritten.action == Action.COUNT:
        stmt = select(func.count()).select_from(table).where(*clauses)
        return (await conn.execute(stmt)).scalar_one()

    if rewritten.action == Action.AGGREGATE:
        if not shape.aggregates:
            raise ValueError("aggregate requires at least one aggregate")
        stmt = select(*_aggregate_columns(table, shape)).select_from(table).where(*clauses)
        row = (await conn.execute(stmt)).mappings().one()
        return _nest_aggregates(row)

    # GROUP_BY
    keys = [_column(table, name) for name in shape.by]
    stmt = select(*keys, *_aggregate_columns(table, shape)).where(*clauses).group_by(*keys)
    for name, direction in shape.order_by:
        column = _column(table, name)
        stmt = stmt.order_by(column.desc() if direction.lower() == "desc" else column.asc())
    result = await conn.execute(stmt)
    return [_nest_aggregates(row) for row in result.mappings().all()]


# ────────────────────────────────────────────────────────────────
# Writes
# ────────────────────────────────────────────────────────────────

def _primary_key(table: Table):
    return list(table.primary_key.columns)[0]


async def _single_target(conn: AsyncConnection, table: Table, rewritten: RewrittenOperation) -> Any:
    """Primary key of the one row a single-row write may touch."""
    pk = _primary_key(table)
    stmt = select(pk).where(*build_where(table, rewritten.where)).limit(2)
    ids = (await conn.execute(stmt)).scalars().all()
    if not ids:
        raise RecordNotFound(
            f"{rewritten.model}.{rewritten.original_action.value}: no matching record",
            model=rewritten.model,
        )
    if len(ids) > 1:
        raise ValueError(
            f"{rewritten.model}.{rewritten.original_action.value} matched more than one "
            f"record; use the *_many form"
        )
    return ids[0]


async def _single_result(conn: AsyncConnection, stmt, rewritten: RewrittenOperation) -> dict[str, Any]:
    # The write repeats the scoped filter; a row that left scope after lookup is gone
    row = (await conn.execute(stmt)).mappings().first()
    if row is None:
        raise RecordNotFound(
            f"{rewritten.model}.{rewritten.original_action.value}: no matching record",
            model=rewritten.model,
        )
    return _to_dict(row)


async def _write(conn: AsyncConnection, table: Table, rewritten: RewrittenOperation) -> Any:
    action = rewritten.action

    if action == Action.CREATE:
        stmt = insert(table).values(**rewritten.data).returning(*table.c)
        return _to_dict((await conn.execute(stmt)).mappings().one())

    if action == Action.CREATE_MANY:
        # executemany compiles one INSERT per batch, so batch by column set
        batches: dict[tuple[str, ...], list[dict[str, Any]]] = {}
        for item in rewritten.data:
            batches.setdefault(tuple(sorted(item)), []).append(item)
        for items in batches.values():
            await conn.execute(insert(table), items)
        return len(rewritten.data)

    if action == Action.UPDATE:
        target = await _single_target(conn, table, rewritten)
        stmt = (
            update(table)
            .where(_primary_key(table) == target, *build_where(table, rewritten.where))
            .values(**rewritten.data)
            .returning(*table.c)
        )
        return await _single_result(conn, stmt, rewritten)

    if action == Action.UPDATE_MANY:
        stmt = update(table).where(*build_where(table, rewritten.where)).values(**rewritten.data)
        return (await conn.execute(stmt)).rowcount

    if action == Action.DELETE:
        target = await _single_target(conn, table, rewritten)
        stmt = (
            delete(table)
            .where(_primary_key(table) == target, *build_where(table, rewritten.where))
            .returning(*table.c)
        )
        return await _single_result(conn, stmt, rewritten)

    if action == Action.DELETE_MANY:
        stmt = delete(table).where(*build_where(table, rewritten.where))
        return (await conn.execute(stmt)).rowcount

    raise ValueError(f"Cannot execute action {action.value}")


async def execute_rewritten(conn: AsyncConnection, table: Table, rewritten: RewrittenOperation) -> Any:
    """
    Run a rewritten operation.

    Returns:
        find_many -> list of row dicts; find_first -> row dict or None;
        count -> int; aggregate -> nested dict; group_by -> list of dicts;
        create/update/delete/restore -> the affected row dict;
        *_many -> number of affected rows
    """
    if rewritten.action.is_read:
        return await _read(conn, table, rewritten)
    return await _write(conn, table, rewritten)
