"""
HTTP binding tests.

Requests go through the real app (middleware, exception handlers, shared
client) via httpx's ASGITransport, with tokens signed by PyJWT.

Run with: pytest tests/test_middleware.py -v
"""

import asyncio

import jwt
import pytest
import pytest_asyncio
from fastapi import Depends, Request
from httpx import ASGITransport, AsyncClient

from serviceos.core.config import get_settings
from serviceos.core.responses import ErrorCodes, success_response
from serviceos.main import create_app, get_client
from serviceos.tenancy.client import TenantClient
from serviceos.tenancy.context import ExecutionContext, current, with_system_context
from serviceos.tenancy.middleware import context_from_claims, get_execution_context

from conftest import TENANT_A, TENANT_B, USER_A, USER_B


def make_token(actor_id, tenant_id, role="ADMIN", secret=None) -> str:
    settings = get_settings()
    claims = {"sub": actor_id, "id_doanh_nghiep": tenant_id, "vai_tro": role}
    return jwt.encode(claims, secret or settings.jwt_secret, algorithm=settings.jwt_algorithm)


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def app(engine, tenants):
    app = create_app(engine=engine)

    @app.get("/khach-hang")
    async def list_customers(
        ctx: ExecutionContext = Depends(get_execution_context),
        client: TenantClient = Depends(get_client),
    ):
        await asyncio.sleep(0.01)
        rows = await client.model("KhachHang").find_many(order_by={"ho_ten": "asc"})
        return success_response({"tenant": ctx.tenant_id, "names": [r["ho_ten"] for r in rows]})

    @app.get("/khach-hang/count")
    async def count_customers(request: Request):
        return success_response(await request.app.state.client.model("KhachHang").count())

    @app.put("/khach-hang/{customer_id}")
    async def rename_customer(customer_id: str, request: Request):
        client = request.app.state.client
        row = await client.model("KhachHang").update({"id": customer_id}, {"ho_ten": "Moi"})
        return success_response(row["id"])

    @app.get("/whoami")
    async def whoami():
        ctx = current()
        return {"actor": ctx.actor_id if ctx else None, "tenant": ctx.tenant_id if ctx else None}

    client = app.state.client

    async def seed():
        await client.model("KhachHang").create_many([
            {"id_doanh_nghiep": TENANT_A, "ho_ten": "An"},
            {"id_doanh_nghiep": TENANT_A, "ho_ten": "Binh"},
            {"id_doanh_nghiep": TENANT_B, "ho_ten": "Cuong"},
        ])

    await with_system_context(seed, reason="seed middleware test")
    return app


@pytest_asyncio.fixture
async def http(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


class TestContextFromClaims:
    def test_maps_auth_claims(self):
        ctx = context_from_claims({"sub": USER_A, "id_doanh_nghiep": TENANT_A, "vai_tro": "KY_THUAT_VIEN"})
        assert ctx.actor_id == USER_A
        assert ctx.tenant_id == TENANT_A
        assert ctx.role == "KY_THUAT_VIEN"
        assert ctx.source.value == "http"

    def test_empty_tenant_claim_is_invalid(self):
        with pytest.raises(ValueError):
            context_from_claims({"sub": USER_A, "id_doanh_nghiep": ""})


class TestTenantContextMiddleware:
    @pytest.mark.asyncio
    async def test_request_sees_only_its_tenant(self, http):
        response = await http.get("/khach-hang", headers=auth(make_token(USER_A, TENANT_A)))
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["data"] == {"tenant": TENANT_A, "names": ["An", "Binh"]}

        response = await http.get("/khach-hang", headers=auth(make_token(USER_B, TENANT_B)))
        assert response.json()["data"]["names"] == ["Cuong"]

    @pytest.mark.asyncio
    async def test_concurrent_requests_do_not_leak(self, http):
        token_a = make_token(USER_A, TENANT_A)
        token_b = make_token(USER_B, TENANT_B)
        responses = await asyncio.gather(*(
            http.get("/khach-hang", headers=auth(token_a if i % 2 == 0 else token_b))
            for i in range(10)
        ))
        for i, response in enumerate(responses):
            expected = TENANT_A if i % 2 == 0 else TENANT_B
            assert response.json()["data"]["tenant"] == expected
        assert current() is None

    @pytest.mark.asyncio
    async def test_claims_are_bound(self, http):
        response = await http.get("/whoami", headers=auth(make_token(USER_B, TENANT_B)))
        assert response.json() == {"actor": USER_B, "tenant": TENANT_B}

    @pytest.mark.asyncio
    async def test_no_token_runs_unbound(self, http):
        assert (await http.get("/whoami")).json() == {"actor": None, "tenant": None}
        assert (await http.get("/health")).json() == {"ok": True}

    @pytest.mark.asyncio
    async def test_unbound_data_access_fails_closed(self, http):
        response = await http.get("/khach-hang/count")
        assert response.status_code == 403
        body = response.json()
        assert body["status"] == "error"
        assert body["error"]["code"] == ErrorCodes.TENANT_CONTEXT_REQUIRED
        assert "data" not in body

    @pytest.mark.asyncio
    async def test_dependency_requires_authentication(self, http):
        response = await http.get("/khach-hang")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_token_is_rejected(self, http):
        forged = make_token(USER_A, TENANT_B, secret="some-other-secret-0123456789abcdef-xyz")
        response = await http.get("/whoami", headers=auth(forged))
        assert response.status_code == 401
        assert response.json()["error"]["code"] == ErrorCodes.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_other_tenant_row_is_not_found(self, http, app):
        async def find_b_customer():
            return await app.state.client.model("KhachHang").find_first({"id_doanh_nghiep": TENANT_B})

        row_b = await with_system_context(find_b_customer, reason="locate test row")
        response = await http.put(f"/khach-hang/{row_b['id']}", headers=auth(make_token(USER_A, TENANT_A)))
        assert response.status_code == 404
        assert response.json()["error"]["code"] == ErrorCodes.RESOURCE_NOT_FOUND
