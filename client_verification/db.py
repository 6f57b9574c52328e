"""Database engine and session utilities for async SQLAlchemy.

All components share a single, lazily initialized async engine built from
``DATABASE_URL``. ``postgres://`` and ``postgresql://`` URLs are normalized to
the ``asyncpg`` driver.

Example:
    >>> from client_verification.db import get_session
    >>> async with get_session() as session:
    ...     await session.execute(text("SELECT 1"))
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # type: ignore

from client_verification.config import Settings


_engine: Any = None
_session_factory: Any = None


def normalize_database_url(db_url: str) -> str:
    """Return ``db_url`` rewritten for the asyncpg driver.

    >>> normalize_database_url("postgres://u:p@db:5432/crm")
    'postgresql+asyncpg://u:p@db:5432/crm'
    """
    if db_url.startswith("postgresql+asyncpg://"):
        return db_url
    if db_url.startswith("postgresql://"):
        return db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if db_url.startswith("postgres://"):
        return db_url.replace("postgres://", "postgresql+asyncpg://", 1)
    return db_url


def is_database_configured() -> bool:
    return bool(Settings().database_url)


def get_engine() -> Any:
    """Return the process-wide async SQLAlchemy engine, creating it if needed."""
    global _engine, _session_factory
    if _engine is None:
        db_url = Settings().database_url
        if not db_url:
            raise RuntimeError("DATABASE_URL is not configured")
        _engine = create_async_engine(normalize_database_url(db_url), pool_pre_ping=True)
        _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


@asynccontextmanager
async def get_session() -> AsyncIterator[Any]:
    """Yield an async SQLAlchemy session bound to the shared engine."""
    global _session_factory
    if _session_factory is None:
        get_engine()
    assert _session_factory is not None
    async with _session_factory() as session:
        yield session


async def dispose_engine() -> None:
    """Close pooled connections; used on worker shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
