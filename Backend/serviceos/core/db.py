from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import Settings, get_settings


class Base(DeclarativeBase):
    pass


def build_engine(settings: Settings | None = None) -> AsyncEngine:
    """
    Create the process-wide pooled engine.

    One engine (and one pool) serves every concurrent request and job.
    Tenant scoping never depends on which connection an operation gets.
    """
    settings = settings or get_settings()
    kwargs = {
        "echo": settings.db_echo,
        "pool_pre_ping": True,  # Verify connections before using them
    }
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(
            pool_recycle=3600,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )
    return create_async_engine(settings.database_url, **kwargs)
