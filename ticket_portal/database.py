"""Async SQLAlchemy engine, session factory, and FastAPI dependency.

PostgreSQL (asyncpg) is the production backend. SQLite (aiosqlite) is
accepted for local development and the test suite; the ticket store and
the sync job mutex only rely on features both dialects provide
(``ON CONFLICT`` upserts and partial unique indexes).
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from ticket_portal.config import settings


def _engine_options(database_url: str) -> dict[str, Any]:
    if make_url(database_url).get_backend_name() == "sqlite":
        return {}
    return {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 3600,
    }


def create_engine_for(database_url: str) -> AsyncEngine:
    """Create the async engine with options suited to the URL's dialect."""
    async_engine = create_async_engine(
        database_url,
        echo=False,
        **_engine_options(database_url),
    )

    if async_engine.dialect.name == "sqlite":

        @event.listens_for(async_engine.sync_engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
            # attachments rely on ON DELETE CASCADE
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return async_engine


engine = create_engine_for(settings.DATABASE_URL)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base class shared by all ORM models."""

    pass


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async database session.

    Read endpoints commit nothing themselves; the session is committed on
    success, rolled back on error, and closed when the request finishes.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
