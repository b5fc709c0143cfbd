"""Database session factory setup."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import consum.models  # noqa: F401  (registers table models with the metadata)


def _engine_kwargs(db_url: str, pool_size: int) -> dict[str, Any]:
    """Get engine kwargs based on database type."""
    kwargs: dict[str, Any] = {"echo": False}

    # SQLite doesn't support connection pooling options
    if not db_url.startswith("sqlite"):
        kwargs.update(
            {
                "pool_size": pool_size,
                "max_overflow": 0,
                "pool_pre_ping": True,
            }
        )

    return kwargs


def setup_db_session(db_url: str, pool_size: int = 20) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory.

    Args:
        db_url: Database URL (postgresql+psycopg://... in production)
        pool_size: Maximum number of connections in the pool

    Returns:
        Async session factory for creating database sessions
    """
    engine = create_async_engine(db_url, **_engine_kwargs(db_url, pool_size))

    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading issues after commit
    )


async def create_tables(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Create any missing tables from SQLModel metadata."""
    engine = session_factory.kw["bind"]
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
