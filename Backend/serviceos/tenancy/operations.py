"""
Structured operation values passed through the rewrite engine.

Filters use a Prisma-style dictionary shape:

    {"ho_ten": "An"}                          equality
    {"ngay_xoa": None}                        IS NULL
    {"so_luong": {"gt": 0}}                   operators: not, in, not_in, lt, lte,
                                              gt, gte, contains, startswith
    {"OR": [{"loai_phieu": "THU"}, {...}]}    combinators: AND, OR, NOT

Operation values are frozen; the engine always builds a new
RewrittenOperation instead of editing the caller's dictionaries.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Union


Filter = Mapping[str, Any]
Payload = Mapping[str, Any]

COMBINATORS = ("AND", "OR", "NOT")


class Action(str, Enum):
    # Reads
    FIND_MANY = "find_many"
    FIND_FIRST = "find_first"
    COUNT = "count"
    AGGREGATE = "aggregate"
    GROUP_BY = "group_by"
    # Writes
    CREATE = "create"
    CREATE_MANY = "create_many"
    UPDATE = "update"
    UPDATE_MANY = "update_many"
    DELETE = "delete"
    DELETE_MANY = "delete_many"
    RESTORE = "restore"

    @property
    def is_read(self) -> bool:
        return self in READ_ACTIONS


READ_ACTIONS = frozenset(
    {Action.FIND_MANY, Action.FIND_FIRST, Action.COUNT, Action.AGGREGATE, Action.GROUP_BY}
)


@dataclass(frozen=True)
class QueryShape:
    """Read modifiers the engine passes through untouched."""

    order_by: Sequence[tuple[str, str]] = ()    # [(column, "asc" | "desc")]
    skip: Optional[int] = None
    take: Optional[int] = None
    columns: Optional[Sequence[str]] = None      # projection; None = all columns
    by: Sequence[str] = ()                       # group_by keys
    aggregates: Mapping[str, Sequence[str]] = field(default_factory=dict)  # {"_sum": ["so_tien"]}


@dataclass(frozen=True)
class Operation:
    """
    One read or write request against one model.

    Attributes:
        model: Registry model name (e.g. "KhachHang")
        action: What to do
        where: Caller's filter (target predicate for writes)
        data: Payload for create/update; a sequence of payloads for create_many
        include_deleted: Reads/updates also see soft-deleted rows
        hard_delete: Physical delete intent (honored only under system override)
        shape: Read modifiers
    """

    model: str
    action: Action
    where: Optional[Filter] = None
    data: Union[Payload, Sequence[Payload], None] = None
    include_deleted: bool = False
    hard_delete: bool = False
    shape: QueryShape = field(default_factory=QueryShape)


@dataclass(frozen=True)
class RewrittenOperation:
    """
    The operation as it reaches the store.

    `action` may differ from the original one: a soft delete arrives here
    as UPDATE / UPDATE_MANY, a restore as UPDATE.
    `physical_delete` is True only when rows are really removed.
    """

    model: str
    action: Action
    original_action: Action
    where: dict[str, Any]
    data: Union[dict[str, Any], list[dict[str, Any]], None]
    shape: QueryShape
    tenant_id: Optional[str] = None
    system_override: bool = False
    physical_delete: bool = False
