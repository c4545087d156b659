"""
Pytest configuration and fixtures for async database testing.

Every test gets its own file-backed SQLite database (through aiosqlite) and
a fresh pooled engine, so concurrent operations really run on separate
pooled connections the way they do against PostgreSQL.
"""
import os

# Settings are read on first use; set them before any serviceos import
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "serviceos-test-secret-0123456789abcdef")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from dataclasses import dataclass
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from serviceos.core.db import Base
from serviceos.tenancy.client import TenantClient
from serviceos.tenancy.context import ExecutionContext, with_system_context
from serviceos.tenancy.registry import TenantScopeRegistry, get_registry


TENANT_A = "aaaaaaaa-0000-4000-8000-000000000001"
TENANT_B = "bbbbbbbb-0000-4000-8000-000000000002"
TENANT_INACTIVE = "cccccccc-0000-4000-8000-000000000003"

USER_A = "a0000000-0000-4000-8000-00000000000a"
USER_A2 = "a0000000-0000-4000-8000-0000000000a2"
USER_B = "b0000000-0000-4000-8000-00000000000b"

FIXED_NOW = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)


@dataclass(frozen=True)
class SeededTenants:
    tenant_a: str = TENANT_A
    tenant_b: str = TENANT_B
    inactive: str = TENANT_INACTIVE
    user_a: str = USER_A
    user_a2: str = USER_A2
    user_b: str = USER_B


def ctx_a(actor_id: str = USER_A) -> ExecutionContext:
    return ExecutionContext(actor_id=actor_id, tenant_id=TENANT_A, role="ADMIN")


def ctx_b(actor_id: str = USER_B) -> ExecutionContext:
    return ExecutionContext(actor_id=actor_id, tenant_id=TENANT_B, role="ADMIN")


@pytest.fixture(scope="session")
def registry() -> TenantScopeRegistry:
    return get_registry()


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncEngine:
    """
    Engine on a per-test SQLite file with the full schema created.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'serviceos_test.db'}",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def client(engine, registry) -> TenantClient:
    return TenantClient(engine, registry)


@pytest_asyncio.fixture
async def tenants(client) -> SeededTenants:
    """
    Two active tenants with users, plus one suspended tenant.
    """
    async def seed():
        await client.model("DoanhNghiep").create_many([
            {"id": TENANT_A, "ten_doanh_nghiep": "Cong ty A"},
            {"id": TENANT_B, "ten_doanh_nghiep": "Cong ty B"},
            {"id": TENANT_INACTIVE, "ten_doanh_nghiep": "Cong ty C", "trang_thai": 0},
        ])
        await client.model("NguoiDung").create_many([
            {"id": USER_A, "id_doanh_nghiep": TENANT_A, "email": "a@a.vn", "ho_ten": "Nguyen Van A"},
            {"id": USER_A2, "id_doanh_nghiep": TENANT_A, "email": "a2@a.vn", "ho_ten": "Tran Thi A"},
            {"id": USER_B, "id_doanh_nghiep": TENANT_B, "email": "b@b.vn", "ho_ten": "Le Van B"},
        ])

    await with_system_context(seed, reason="seed test tenants")
    return SeededTenants()
