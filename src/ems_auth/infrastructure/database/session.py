"""
Database session management.

Provides the async SQLAlchemy engine and session factory, built from the
settings object at application start-up.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ems_auth.config.settings import Settings
from ems_auth.infrastructure.database.base import Base

logger = logging.getLogger(__name__)


def create_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async engine for the configured database.

    In-memory SQLite databases share one connection so every session sees
    the same tables.
    """
    kwargs = {"echo": settings.db_echo}
    if settings.database_url.startswith("sqlite") and ":memory:" in settings.database_url:
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_pre_ping"] = True  # Verify connections before using

    engine = create_async_engine(settings.database_url, **kwargs)
    logger.info(f"Database engine created ({engine.url.render_as_string(hide_password=True)})")
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Don't expire objects after commit
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """
    Initialize database schema.

    Creates the users and audit_logs tables. Should only be used in
    development/testing.
    """
    # Register models with Base.metadata before create_all()
    from ems_auth.infrastructure.database import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """
    Close database engine and clean up connections.

    Should be called on application shutdown.
    """
    await engine.dispose()
