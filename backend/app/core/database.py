"""
Database layer — async SQLAlchemy 2.0 (aiosqlite locally, asyncpg in prod).

Provides:
    • Async engine and session factory builders
    • Base model for ORM entities
    • Table creation / disposal helpers

The engine is built by the application lifespan (or a test fixture), never
at import time, so the in-memory store works without any database driver
configured.

Usage:
    from backend.app.core.database import build_engine, build_session_factory

    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    session_factory = build_session_factory(engine)
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


# ── Engine ──
def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create the async engine for ``url``."""
    return create_async_engine(url, echo=echo, future=True)


# ── Session Factory ──
def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── Lifecycle ──
async def init_db(engine: AsyncEngine) -> None:
    """Create all tables (dev/test only — use migrations in production)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def close_db(engine: AsyncEngine) -> None:
    """Dispose engine connections."""
    await engine.dispose()
    logger.info("Database connections closed")
