"""Async database manager for Attest-Engine (single-DB).

The audit chain relies on every append committing before the next one reads
the tail, so writes go through ``get_session()`` (commit on exit) while
listing and verification use ``read_session()`` which never commits.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from attest_engine.common.config import AttestSettings, get_settings
from attest_engine.common.models import Base

# Import all model modules so Base.metadata is complete for create_all().
import attest_engine.vault.models  # noqa: F401
import attest_engine.signing.models  # noqa: F401
import attest_engine.audit.models  # noqa: F401

SQLITE_BUSY_TIMEOUT = 30  # seconds


def _prepare_sqlite(url: str) -> dict:
    """Create the parent directory of a file-backed SQLite URL.

    Returns the connect_args to use for the engine.
    """
    parsed = make_url(url)
    if not parsed.get_backend_name().startswith("sqlite"):
        return {}
    database = parsed.database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)
    return {"timeout": SQLITE_BUSY_TIMEOUT}


class DatabaseManager:
    """Owns the async engine and hands out sessions."""

    def __init__(self, settings: AttestSettings | None = None):
        self._settings = settings or get_settings()
        self.engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        url = self._settings.db_url
        self.engine = create_async_engine(
            url, echo=False, connect_args=_prepare_sqlite(url),
        )
        self._session_factory = async_sessionmaker(
            self.engine, expire_on_commit=False
        )

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not initialized — call init() first")
        return self._session_factory

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Transactional session: commits on success, rolls back on error."""
        async with self._factory()() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def read_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Read-only session; never commits."""
        async with self._factory()() as session:
            try:
                yield session
            finally:
                await session.rollback()

    async def create_all(self) -> None:
        if self.engine is None:
            raise RuntimeError("DatabaseManager not initialized — call init() first")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self._session_factory = None
