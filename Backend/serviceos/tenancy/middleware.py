"""
HTTP binding of the execution context.

TenantContextMiddleware decodes the bearer JWT issued by the auth flow
(claims `sub`, `id_doanh_nghiep`, `vai_tro`) and binds an ExecutionContext
for the full extent of the request. Requests without a usable token run
unbound, so any tenant-scoped data access they attempt fails with
MissingTenantContext.

Usage:
    app.add_middleware(TenantContextMiddleware)

    @app.get("/khach-hang")
    async def list_customers(ctx: ExecutionContext = Depends(get_execution_context)):
        ...
"""

import logging
from typing import Callable, Optional

import jwt
from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..core.config import Settings, get_settings
from ..core.responses import ErrorCodes, error_response
from .context import ContextSource, ExecutionContext, bind, current


logger = logging.getLogger(__name__)

ACTOR_CLAIM = "sub"
TENANT_CLAIM = "id_doanh_nghiep"
ROLE_CLAIM = "vai_tro"


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def context_from_claims(claims: dict) -> ExecutionContext:
    """
    Build the request context from decoded JWT claims.

    Raises:
        ValueError: a claim is present but empty
    """
    return ExecutionContext(
        actor_id=claims.get(ACTOR_CLAIM),
        tenant_id=claims.get(TENANT_CLAIM),
        role=claims.get(ROLE_CLAIM),
        source=ContextSource.HTTP,
    )


def decode_token(token: str, settings: Optional[Settings] = None) -> dict:
    settings = settings or get_settings()
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


class TenantContextMiddleware(BaseHTTPMiddleware):
    """
    Bind the caller's identity for the request.

    The binding is made before call_next, so the endpoint and every task it
    spawns see it; it is released when the response has been produced.
    An invalid token is answered with 401 instead of running unbound.
    """

    def __init__(self, app, settings: Optional[Settings] = None):
        super().__init__(app)
        self.settings = settings

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        token = _bearer_token(request)
        if token is None:
            return await call_next(request)

        try:
            claims = decode_token(token, self.settings)
            ctx = context_from_claims(claims)
        except (jwt.InvalidTokenError, ValueError) as e:
            logger.warning("Rejected bearer token on %s: %s", request.url.path, e)
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content=error_response(ErrorCodes.INVALID_TOKEN, "Invalid or expired token"),
            )

        with bind(ctx):
            return await call_next(request)


async def get_execution_context() -> ExecutionContext:
    """
    FastAPI dependency returning the bound context.

    Raises:
        HTTPException: 401 when the request is unauthenticated
    """
    ctx = current()
    if ctx is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return ctx


__all__ = [
    "TenantContextMiddleware",
    "context_from_claims",
    "decode_token",
    "get_execution_context",
]
