"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Manages the async database engine and sessions.

- One engine per process, built once at startup
- Session factory handed to the time-series store
- Initial connect goes through connect_with_backoff

============================================================
DATABASE REQUIREMENTS
============================================================
- PostgreSQL via asyncpg in production
- SQLite via aiosqlite for tests
- SQLAlchemy 2.0 async ORM

============================================================
"""

import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from core.config import DatabaseConfig, RetryConfig
from core.retry import connect_with_backoff

from .models import Base


logger = logging.getLogger(__name__)


# =============================================================
# ENGINE
# =============================================================

def create_engine(config: DatabaseConfig) -> AsyncEngine:
    """
    Create the async engine.

    Pool sizing applies to server databases only. In-memory SQLite
    shares one connection so every session sees the same tables.
    """
    if config.is_sqlite:
        return create_async_engine(
            config.url,
            echo=config.echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

    return create_async_engine(
        config.url,
        echo=config.echo,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_recycle=config.pool_recycle,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    """Create any missing monitor tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables verified/created")


async def check_connection(engine: AsyncEngine) -> bool:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True


async def connect_database(
    config: DatabaseConfig,
    retry: Optional[RetryConfig] = None,
) -> AsyncEngine:
    """Build the engine and verify connectivity with bounded retries."""
    engine = create_engine(config)

    async def _connect() -> AsyncEngine:
        await check_connection(engine)
        return engine

    try:
        await connect_with_backoff(_connect, "database", retry)
    except Exception:
        await engine.dispose()
        raise

    logger.info(f"Database connection established: {config.url.split('@')[-1]}")
    return engine
