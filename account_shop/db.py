# db.py
"""
Async database layer.

Holds the in-process store as an explicit `Database` object instead of a
module-level engine, so the application factory and every test can build
their own isolated instance.

The default URL is an in-memory SQLite database. It lives on a single shared
connection (StaticPool), so units of work on it are serialised through an
asyncio.Lock: one session at a time, committed on success, rolled back on
exception.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from account_shop.models import Base

logger = logging.getLogger(__name__)

MEMORY_URL = "sqlite+aiosqlite:///:memory:"


def _is_memory_url(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"))


class Database:
    """
    Engine, session factory and unit-of-work boundary for the entity store.
    """

    def __init__(self, url: str = MEMORY_URL, echo: bool = False):
        self.url = url
        self.in_memory = _is_memory_url(url)

        engine_kwargs = {"echo": echo}
        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        if self.in_memory:
            # Every session must see the same in-memory database.
            engine_kwargs["poolclass"] = StaticPool

        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)

        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            autoflush=False,
            expire_on_commit=False,  # Avoids implicit IO on attribute access after commit
        )

        # Only the shared in-memory connection needs serialising.
        self._lock: Optional[asyncio.Lock] = asyncio.Lock() if self.in_memory else None

    # ==========================================================================
    # SCHEMA
    # ==========================================================================

    async def create_schema(self) -> None:
        """Creates all tables defined in models.py (idempotent)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    # ==========================================================================
    # SESSIONS
    # ==========================================================================

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Provides a transactional async session.
        Handles commit on success, rollback on exception, and ensures close().

        Usage:
            async with database.session() as db:
                product = await store.get_product(db, 1)
        """
        if self._lock is None:
            async with self._unit_of_work() as session:
                yield session
            return

        async with self._lock:
            async with self._unit_of_work() as session:
                yield session

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncGenerator[AsyncSession, None]:
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.debug(f"DB transaction rolled back due to error: {e!r}")
                raise

    # ==========================================================================
    # HEALTH CHECK
    # ==========================================================================

    async def healthcheck(self) -> bool:
        """
        Verifies DB connectivity by executing a lightweight query.
        Returns True if successful, False otherwise.
        """
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"DB health check failed: {e}")
            return False


# ==============================================================================
# FASTAPI DEPENDENCY
# ==============================================================================

async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Yields a unit-of-work session on the app's Database.
    One session per request; commits when the route returns.
    """
    database: Database = request.app.state.database
    async with database.session() as session:
        yield session
