"""
HERA Finance Engine - Database Configuration

This module handles database connection setup using SQLAlchemy 2.0 async.
The engine is only created when a database URL is configured; otherwise the
in-memory ledger store is used.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import MetaData

from finance_engine.config import Settings


# Naming convention for constraints (helps with migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    metadata = MetaData(naming_convention=convention)


def create_engine_from_settings(settings: Settings) -> Optional[AsyncEngine]:
    """Create the async engine, or None when no database is configured."""
    if not settings.database_url_async:
        return None

    kwargs = {
        "echo": settings.database_echo,
        "pool_pre_ping": True,  # Verify connections before use
    }
    if not settings.database_url_async.startswith("sqlite"):
        kwargs["pool_size"] = settings.database_pool_size
        kwargs["max_overflow"] = settings.database_max_overflow

    return create_async_engine(settings.database_url_async, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session factory bound to the engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine):
    """
    Initialize database - create all ledger tables.
    Use this for development/testing only.
    """
    # Import models so they register on Base.metadata
    from finance_engine.models import ledger  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine):
    """Close database connections."""
    await engine.dispose()
