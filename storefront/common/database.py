"""Async SQLAlchemy wiring for the cart service and its maintenance scripts."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from sqlalchemy import MetaData, event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import StorefrontSettings


@dataclass(frozen=True, slots=True)
class Database:
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]


_DATABASES: dict[str, Database] = {}


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
    # Cart lines rely on ON DELETE CASCADE, which SQLite ignores unless asked.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_database(database_url: str) -> Database:
    """Return the cached engine and session factory for ``database_url``."""

    database = _DATABASES.get(database_url)
    if database is None:
        engine = create_async_engine(database_url, pool_pre_ping=True)
        if make_url(database_url).get_backend_name() == "sqlite":
            event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        database = Database(engine, async_sessionmaker(engine, expire_on_commit=False))
        _DATABASES[database_url] = database
    return database


def create_engine(database_url: str) -> AsyncEngine:
    return get_database(database_url).engine


def get_session_factory(database_url: str) -> async_sessionmaker[AsyncSession]:
    return get_database(database_url).session_factory


async def create_schema(database_url: str, metadata: MetaData) -> None:
    """Create any cart tables that do not exist yet."""

    async with create_engine(database_url).begin() as conn:
        await conn.run_sync(metadata.create_all)


@asynccontextmanager
async def session_scope(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Yield a session that commits on success and rolls back on error."""

    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        await session.commit()


def resolve_database_url(settings: StorefrontSettings, fallback: str) -> str:
    return settings.database_url or fallback


async def dispose_engines() -> None:
    """Dispose every cached engine; called on service shutdown and between tests."""

    databases = list(_DATABASES.values())
    _DATABASES.clear()
    for database in databases:
        await database.engine.dispose()
