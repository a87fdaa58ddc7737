"""Async database engine for the SQL-backed store.

A module-level singleton engine with connection pooling, created from
Settings.POSTGRES_URL unless a URL is passed explicitly.
"""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ..config import get_settings
from .models import engine_metadata

logger = structlog.get_logger()

_engine: AsyncEngine | None = None


def _make_async_url(postgres_url: str) -> str:
    """Ensure the URL uses the asyncpg driver prefix."""
    url = postgres_url
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


def get_engine(postgres_url: str | None = None) -> AsyncEngine:
    """Create or return the engine singleton.

    The *postgres_url* argument is ignored once the engine exists.

    Raises:
        RuntimeError: If no engine exists yet and no URL is configured
    """
    global _engine
    if _engine is not None:
        return _engine

    settings = get_settings()
    if postgres_url is None:
        postgres_url = settings.POSTGRES_URL

    if not postgres_url:
        raise RuntimeError(
            "Database engine not initialized and no POSTGRES_URL provided. "
            "Call init_db() first or set POSTGRES_URL env var."
        )

    kwargs: dict = dict(
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600,
    )
    if settings.DB_SSL.lower() in ("1", "true", "yes"):
        kwargs["connect_args"] = {"ssl": "require"}

    _engine = create_async_engine(_make_async_url(postgres_url), **kwargs)
    logger.info("engine_created")
    return _engine


async def close_engine() -> None:
    """Dispose of the connection pool."""
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        logger.info("engine_closed")


async def init_db(postgres_url: str | None = None) -> AsyncEngine:
    """Create the engine's tables if they do not already exist."""
    engine = get_engine(postgres_url)
    async with engine.begin() as conn:
        await conn.run_sync(engine_metadata.create_all)
    logger.info("db_initialized")
    return engine
