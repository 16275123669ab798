"""
Pitch Market - Database Connection
==================================

One async engine per process. Request handlers get a session through
`get_db`; live stream ticks borrow their own short-lived sessions from
`AsyncSessionLocal` so a long-lived socket never pins a connection.

The engine services commit their own unit of work. Concurrency between
writers is settled by row locks on PostgreSQL and by the unique indexes
on `pitch_schedules` and `investments` on either backend.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from pitchmarket.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for clusters, teams, schedules, investments and audit rows."""


# ==========================================================================
# Engine Setup
# ==========================================================================

def build_engine() -> AsyncEngine:
    """
    Engine for aiosqlite (development, tests) or asyncpg (production).

    SQLite ignores FOR UPDATE, so there the unique indexes are the only
    guard against two live pitches or two rows for one investment pair.
    """
    if settings.is_sqlite:
        return create_async_engine(
            str(settings.DATABASE_URL),
            echo=settings.DATABASE_ECHO,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(
        str(settings.DATABASE_URL),
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        echo=settings.DATABASE_ECHO,
        pool_pre_ping=True,
    )


engine = build_engine()


# ==========================================================================
# Session Factory
# ==========================================================================

# Services keep returning ORM rows after they commit
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


# ==========================================================================
# Session Dependencies
# ==========================================================================

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Per-request session handed to the engine services.

    Nothing is committed here. Whatever a failed request left pending
    is rolled back before the session goes back to the pool.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


# ==========================================================================
# Lifecycle
# ==========================================================================

async def init_db() -> None:
    """Create missing tables and indexes (Alembic owns production schema changes)."""
    async with engine.begin() as conn:
        from pitchmarket.core import models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
