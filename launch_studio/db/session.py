"""
Database Session Management - Async SQLAlchemy session factory.

The Database handle is built once in the application lifespan and injected;
there are no module-level engine singletons.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from launch_studio.config import Settings


class Database:
    """Owns the async engine and session factory for the process lifetime."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Create the engine from pool settings."""
        engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
            echo=settings.log_level == "DEBUG",
        )
        return cls(engine)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Get an async database session.

        Usage:
            async with database.session() as session:
                await session.execute(...)
                await session.commit()
        """
        async with self.session_factory() as session:
            try:
                yield session
            finally:
                await session.close()

    async def ping(self) -> bool:
        """Check database connectivity."""
        async with self.session() as session:
            await session.execute(text("SELECT 1"))
        return True

    async def dispose(self) -> None:
        """Close the engine (for graceful shutdown)."""
        await self.engine.dispose()


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for a request-scoped database session.

    Usage:
        @app.post("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_db)):
            ...
    """
    database: Database = request.app.state.database
    async with database.session() as session:
        yield session
