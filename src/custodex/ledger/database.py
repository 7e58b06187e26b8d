"""Database connection and session management."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from custodex.errors import PersistenceError
from custodex.ledger.models import Base

logger = logging.getLogger(__name__)


def normalize_database_url(url: str) -> str:
    """Convert sync driver URLs to their async equivalents."""
    if url.startswith("sqlite:///") and "aiosqlite" not in url:
        return url.replace("sqlite:///", "sqlite+aiosqlite:///")
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


class Database:
    """Owns the engine and session factory for one database.

    Constructed once at startup and handed to whoever needs the store.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        echo: bool = False,
        engine: Optional[AsyncEngine] = None,
    ):
        if engine is None:
            if url is None:
                raise ValueError("Either url or engine is required")
            engine = create_async_engine(normalize_database_url(url), echo=echo, future=True)
        self.engine = engine
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session scoped to one unit of work.

        Commits on success, rolls back on error. Store failures surface as
        PersistenceError.
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceError(str(e)) from e
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create all tables (development and tests; production uses Alembic)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        """Check that the database answers."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database ping failed: {e}")
            return False

    async def close(self) -> None:
        """Close database connections."""
        await self.engine.dispose()
