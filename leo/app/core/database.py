"""
Database layer — async SQLAlchemy 2.0 engine for the alert store.

Provides:
    • Async engine and session factory built from settings
    • Base model for ORM entities
    • Table creation / connection disposal for the application lifespan

Unlike a module-level engine, each ``AlertRuntime`` builds its own engine so
tests can point it at a throwaway SQLite file.

Usage:
    from leo.app.core.database import create_engine, create_session_factory

    engine = create_engine(settings.DATABASE_URL)
    sessions = create_session_factory(engine)
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from leo.app.core.config import settings

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


# ── Engine ──
def create_engine(url: str = "", *, echo: bool = False) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    url = url or settings.DATABASE_URL
    kwargs: Dict[str, Any] = {"echo": echo or settings.DATABASE_ECHO}
    if not url.startswith("sqlite"):
        kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)


# ── Session Factory ──
def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── Lifecycle ──
async def init_db(engine: AsyncEngine) -> None:
    """Create all tables (use migrations for schema changes in production)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def ping_db(engine: AsyncEngine) -> None:
    """Round-trip a trivial query; raises on connectivity failure."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def close_db(engine: AsyncEngine) -> None:
    """Dispose engine connections."""
    await engine.dispose()
    logger.info("Database connections closed")
