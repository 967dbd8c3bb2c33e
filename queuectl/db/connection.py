"""
Database connection management.
Handles async SQLAlchemy engine and session creation.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from queuectl.config import Settings, get_settings
from queuectl.db.models import Base
from queuectl.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)


def create_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async database engine.

    SQLite connections run in WAL mode and open every transaction with
    BEGIN IMMEDIATE, so writers from any process are serialized by the
    database file lock.

    Args:
        settings: Application settings.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    url = settings.database_url
    if url.startswith("sqlite"):
        engine = create_async_engine(
            url,
            echo=settings.database_echo,
            connect_args={"timeout": settings.database_busy_timeout_seconds},
        )
        _configure_sqlite(engine)
        return engine

    return create_async_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.database_echo,
        pool_pre_ping=True,
    )


def _configure_sqlite(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        # take over transaction control from the driver
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """
    Owns the engine and session factory for one job store.

    Instances are passed explicitly to workers, the reaper and the client
    so that independent queues can coexist in one process.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        engine: AsyncEngine | None = None,
    ):
        """
        Initialize the database handle.

        Args:
            settings: Application settings. Defaults to the cached settings.
            engine: Optional pre-built engine (mainly for tests).
        """
        self.settings = settings or get_settings()
        self.engine = engine or create_engine(self.settings)
        self._session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    async def init(self) -> None:
        """
        Create the jobs table and indexes if they do not exist.
        Should be called on application startup.

        Raises:
            StoreUnavailable: If the store cannot be reached.
        """
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except OperationalError as e:
            raise StoreUnavailable(f"Cannot initialize job store: {e.orig}") from e
        logger.info(
            "Database initialized",
            extra={"dialect": self.dialect_name},
        )

    async def close(self) -> None:
        """
        Dispose of the engine's connection pool.
        Should be called on application shutdown.
        """
        await self.engine.dispose()
        logger.info("Database connection closed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """
        Context manager for one unit of work.

        Commits on success and rolls back on error.

        Yields:
            AsyncSession: An async database session.

        Raises:
            StoreUnavailable: If the store reports an operational error.
        """
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except OperationalError as e:
                await session.rollback()
                raise StoreUnavailable(f"Job store unavailable: {e.orig}") from e
            except Exception:
                await session.rollback()
                raise
