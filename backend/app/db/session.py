############################################################
#
# mathchat - Math-focused Chat Service
#
# session.py: Async engine, session factory and FastAPI dependencies
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Database engine and session management."""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from backend.app.settings import get_settings


def _engine_kwargs() -> Dict[str, Any]:
    settings = get_settings()
    kwargs: Dict[str, Any] = {"echo": settings.database_echo}
    if not settings.is_sqlite:
        # SQLite uses a static/singleton pool which rejects sizing options
        kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
    return kwargs


engine = create_async_engine(get_settings().database_url, **_engine_kwargs())

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_async_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Independent session for work that outlives the request scope.

    Used by the streaming path, whose generator keeps running after
    FastAPI has torn down request dependencies.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def create_all_tables() -> None:
    """Create tables from ORM metadata (development convenience)."""
    from backend.app.db.base import Base
    from backend.app.db import models  # noqa: F401  (register tables)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    await engine.dispose()
