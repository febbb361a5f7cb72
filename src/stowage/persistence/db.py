"""Async database engine and unit-of-work sessions.

Provides async connectivity using SQLAlchemy 2.0 asyncio extension:
PostgreSQL with asyncpg in production, SQLite with aiosqlite in tests.

A ``Database`` is constructed once at startup and passed to the components
that need it; there is no module-level engine.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

if TYPE_CHECKING:
    from stowage.config import Settings

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Engine plus session factory for one database."""

    def __init__(self, url: str, echo: bool = False, **engine_kwargs: Any):
        """Create the engine (no connection is opened yet).

        Args:
            url: SQLAlchemy async URL
            echo: Log SQL statements
            engine_kwargs: Extra ``create_async_engine`` arguments
        """
        self.url = url
        self.is_sqlite = url.startswith("sqlite")
        if not self.is_sqlite:
            engine_kwargs.setdefault("pool_size", 10)
            engine_kwargs.setdefault("max_overflow", 20)
            engine_kwargs.setdefault("pool_timeout", 30)
            engine_kwargs.setdefault("pool_recycle", 1800)  # Recycle connections after 30 minutes
            engine_kwargs.setdefault("pool_pre_ping", True)  # Verify connection health

        self.engine: AsyncEngine = create_async_engine(url, echo=echo, **engine_kwargs)
        if self.is_sqlite:
            # Attachment and variant rows cascade with their blob
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Database":
        return cls(settings.database_url, echo=settings.database_echo)

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations.

        Commits when the block exits normally, rolls back on any exception.

        Usage:
            async with database.unit_of_work() as session:
                await session.execute(...)
        """
        async with self.session_factory() as session:
            async with session.begin():
                yield session

    async def create_all(self) -> None:
        """Create tables if they do not exist.

        For production, use Alembic migrations instead.
        """
        from stowage.persistence.tables import Base

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        from stowage.persistence.tables import Base

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def close(self) -> None:
        """Close database connections."""
        await self.engine.dispose()

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.unit_of_work() as session:
                await session.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Database health check failed: {e}")
            return False
