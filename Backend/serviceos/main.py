import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from .core.config import Settings, get_settings
from .core.db import Base, build_engine
from .core.logging import configure_logging
from .core.responses import ErrorCodes, error_response
from .notifications import NotificationService
from .tenancy.client import TenantClient
from .tenancy.errors import (
    CrossTenantViolationAttempt,
    HardDeleteNotPermitted,
    MissingTenantContext,
    RecordNotFound,
    RegistryConfigurationError,
    TenancyError,
)
from .tenancy.middleware import TenantContextMiddleware
from .tenancy.registry import get_registry


logger = logging.getLogger(__name__)

# Most specific first; anything else is a server-side programming error
_ERROR_STATUS = (
    (RecordNotFound, status.HTTP_404_NOT_FOUND, ErrorCodes.RESOURCE_NOT_FOUND),
    (MissingTenantContext, status.HTTP_403_FORBIDDEN, ErrorCodes.TENANT_CONTEXT_REQUIRED),
    (CrossTenantViolationAttempt, status.HTTP_403_FORBIDDEN, ErrorCodes.CROSS_TENANT_ACCESS),
    (HardDeleteNotPermitted, status.HTTP_403_FORBIDDEN, ErrorCodes.HARD_DELETE_NOT_PERMITTED),
    (RegistryConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCodes.CONFIGURATION_ERROR),
)


def _status_for(exc: TenancyError) -> tuple[int, str]:
    for error_type, status_code, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code, code
    return status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCodes.INTERNAL_ERROR


async def tenancy_error_handler(request: Request, exc: TenancyError) -> JSONResponse:
    status_code, code = _status_for(exc)
    if status_code >= 500:
        logger.error("Tenancy error on %s: %s", request.url.path, exc.message)
        message = "Internal server error"
    else:
        message = exc.message
    details = {"model": exc.model} if exc.model else None
    return JSONResponse(status_code=status_code, content=error_response(code, message, details))


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[AsyncEngine] = None,
) -> FastAPI:
    """
    Build the application around one shared engine and TenantClient.

    The registry is built here, so a schema that breaks the tenancy column
    convention stops the process before it serves anything.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_format=settings.log_json)

    engine = engine or build_engine(settings)
    client = TenantClient(engine, get_registry())

    app = FastAPI(title="ServiceOS Backend")
    app.state.settings = settings
    app.state.client = client
    app.state.notifications = NotificationService(client)

    app.add_middleware(TenantContextMiddleware, settings=settings)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(TenancyError, tenancy_error_handler)

    @app.on_event("startup")
    async def on_startup():
        async with engine.begin() as conn:  # noqa: tenant-scoping
            await conn.run_sync(Base.metadata.create_all)

    @app.on_event("shutdown")
    async def on_shutdown():
        await client.dispose()

    @app.get("/health")
    async def healthcheck():
        return {"ok": True}

    return app


def get_client(request: Request) -> TenantClient:
    """FastAPI dependency for the shared TenantClient."""
    return request.app.state.client
