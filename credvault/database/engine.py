"""
Database Client
===============

Async relational client using SQLAlchemy 2.0.

PostgreSQL via asyncpg in deployment, SQLite via aiosqlite in tests.

Version: 0.1.0
"""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from credvault.logging import get_logger


logger = get_logger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for ORM models."""

    pass


class DatabaseClient:
    """
    Async database client wrapper.

    Manages connection pooling and session lifecycle for one database URL.
    """

    def __init__(
        self,
        url: str,
        echo: bool = False,
        pool_size: int = 10,
        max_overflow: int = 20,
    ) -> None:
        self._url = make_url(url)
        self._echo = echo
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def from_settings(cls, database_settings: Any) -> "DatabaseClient":
        """Build a client from `DatabaseSettings`."""
        return cls(
            url=database_settings.url.get_secret_value(),
            echo=database_settings.echo,
            pool_size=database_settings.pool_size,
            max_overflow=database_settings.max_overflow,
        )

    @property
    def is_sqlite(self) -> bool:
        return self._url.get_backend_name() == "sqlite"

    @property
    def engine(self) -> AsyncEngine:
        """Get or create the async engine."""
        if self._engine is None:
            if self.is_sqlite:
                # In-memory SQLite needs a single shared connection
                from sqlalchemy.pool import StaticPool

                self._engine = create_async_engine(
                    self._url,
                    echo=self._echo,
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                )
            else:
                self._engine = create_async_engine(
                    self._url,
                    echo=self._echo,
                    pool_size=self._pool_size,
                    max_overflow=self._max_overflow,
                    pool_pre_ping=True,
                    pool_recycle=3600,
                )
            logger.info(
                "database_engine_created",
                backend=self._url.get_backend_name(),
                host=self._url.host,
                database=self._url.database,
            )
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autocommit=False,
                autoflush=False,
            )
        return self._session_factory

    async def connect(self) -> None:
        """Open the pool and check the database answers."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("database_connected", backend=self._url.get_backend_name())

    async def create_all(self) -> None:
        """Create all tables registered on the declarative base."""
        # Import registers the table metadata
        from credvault.database import tables  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_tables_created", tables=sorted(Base.metadata.tables))

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Context manager for database sessions.

        Commits on normal exit and rolls back if the body raises.

        Usage:
            async with db.session() as session:
                result = await session.execute(select(CredentialModel))
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close the engine and release all connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("database_engine_closed")

    async def health_check(self) -> dict[str, Any]:
        """
        Check database health.

        Returns:
            dict with status and latency
        """
        try:
            start = time.perf_counter()
            async with self.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                _ = result.scalar()
            latency_ms = (time.perf_counter() - start) * 1000

            return {
                "status": "healthy",
                "latency_ms": round(latency_ms, 2),
                "backend": self._url.get_backend_name(),
                "database": self._url.database,
            }
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e),
            }
