"""
Tenant-scope registry.

Answers, for any model name, whether it is tenant-scoped, which column
holds the tenant id, and whether it supports soft delete. Built once at
startup from the SQLAlchemy mappings plus the static manifest in
tenancy.config, and never mutated afterwards.
"""

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Iterable, Iterator, Optional, Sequence

from sqlalchemy import Table
from sqlalchemy.orm import DeclarativeBase

from .config import (
    CREATOR_COLUMN,
    DELETED_AT_COLUMN,
    GLOBAL_MODELS,
    TENANT_COLUMN,
    TENANT_MODELS,
    UPDATER_COLUMN,
)
from .errors import RegistryConfigurationError, UnknownModel


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantScopeDescriptor:
    """
    Per-model scoping metadata.

    Attributes:
        model_name: Mapped class name (e.g. "KhachHang")
        table: The SQLAlchemy table the model maps
        tenant_column: Tenant id column, None for global models
        supports_soft_delete: True when the table has a nullable deleted-at column
        deleted_at_column: Deleted-at column name, None without soft delete
        creator_column: Audit column stamped on create, if present
        updater_column: Audit column stamped on every write, if present
    """

    model_name: str
    table: Table = field(compare=False, repr=False)
    tenant_column: Optional[str] = None
    supports_soft_delete: bool = False
    deleted_at_column: Optional[str] = None
    creator_column: Optional[str] = None
    updater_column: Optional[str] = None

    @property
    def tenant_scoped(self) -> bool:
        return self.tenant_column is not None


class TenantScopeRegistry:
    """Immutable model name -> TenantScopeDescriptor lookup."""

    def __init__(self, descriptors: Iterable[TenantScopeDescriptor]):
        mapping: dict[str, TenantScopeDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.model_name in mapping:
                raise RegistryConfigurationError(
                    f"Model registered twice: {descriptor.model_name}",
                    model=descriptor.model_name,
                )
            mapping[descriptor.model_name] = descriptor
        self._descriptors = MappingProxyType(mapping)

    def describe(self, model_name: str) -> TenantScopeDescriptor:
        try:
            return self._descriptors[model_name]
        except KeyError:
            raise UnknownModel(model_name) from None

    def __contains__(self, model_name: object) -> bool:
        return model_name in self._descriptors

    def __iter__(self) -> Iterator[TenantScopeDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)

    @property
    def tenant_models(self) -> list[str]:
        return [d.model_name for d in self if d.tenant_scoped]

    @property
    def global_models(self) -> list[str]:
        return [d.model_name for d in self if not d.tenant_scoped]

    @classmethod
    def from_metadata(
        cls,
        base: type[DeclarativeBase],
        tenant_models: Sequence[str] = TENANT_MODELS,
        global_models: Sequence[str] = GLOBAL_MODELS,
    ) -> "TenantScopeRegistry":
        """
        Build the registry from declarative mappings and check the schema
        convention for every model.

        Raises:
            RegistryConfigurationError: a model is unclassified, classified
                twice, missing a mapping, or its table breaks the convention
        """
        mapped = {m.class_.__name__: m.local_table for m in base.registry.mappers}

        both = set(tenant_models) & set(global_models)
        if both:
            raise RegistryConfigurationError(
                f"Models listed as both tenant-scoped and global: {sorted(both)}"
            )
        unclassified = set(mapped) - set(tenant_models) - set(global_models)
        if unclassified:
            raise RegistryConfigurationError(
                f"Mapped models missing from the tenancy manifest: {sorted(unclassified)}"
            )
        unmapped = (set(tenant_models) | set(global_models)) - set(mapped)
        if unmapped:
            raise RegistryConfigurationError(
                f"Manifest models with no table mapping: {sorted(unmapped)}"
            )

        descriptors = [_describe_table(name, mapped[name], tenant_scoped=True) for name in tenant_models]
        descriptors += [_describe_table(name, mapped[name], tenant_scoped=False) for name in global_models]

        registry = cls(descriptors)
        logger.info(
            "Tenant-scope registry built: %d tenant-scoped, %d global models",
            len(registry.tenant_models),
            len(registry.global_models),
        )
        return registry


def _describe_table(model_name: str, table: Table, tenant_scoped: bool) -> TenantScopeDescriptor:
    columns = table.c

    tenant_column = None
    if tenant_scoped:
        if TENANT_COLUMN not in columns:
            raise RegistryConfigurationError(
                f"{model_name}: tenant-scoped table {table.name} has no {TENANT_COLUMN} column",
                model=model_name,
            )
        if columns[TENANT_COLUMN].nullable:
            raise RegistryConfigurationError(
                f"{model_name}: {table.name}.{TENANT_COLUMN} must be NOT NULL",
                model=model_name,
            )
        tenant_column = TENANT_COLUMN

    for optional in (DELETED_AT_COLUMN, CREATOR_COLUMN, UPDATER_COLUMN):
        if optional in columns and not columns[optional].nullable:
            raise RegistryConfigurationError(
                f"{model_name}: {table.name}.{optional} must be nullable",
                model=model_name,
            )

    soft_delete = DELETED_AT_COLUMN in columns
    return TenantScopeDescriptor(
        model_name=model_name,
        table=table,
        tenant_column=tenant_column,
        supports_soft_delete=soft_delete,
        deleted_at_column=DELETED_AT_COLUMN if soft_delete else None,
        creator_column=CREATOR_COLUMN if CREATOR_COLUMN in columns else None,
        updater_column=UPDATER_COLUMN if UPDATER_COLUMN in columns else None,
    )


@lru_cache
def get_registry() -> TenantScopeRegistry:
    """Registry for the application models, built on first use."""
    from ..core.db import Base
    from .. import models  # noqa: F401  (registers the mappings)

    return TenantScopeRegistry.from_metadata(Base)
