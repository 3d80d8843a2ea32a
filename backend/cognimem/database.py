"""
CogniMem Database Configuration

SQLAlchemy async engine with SQLite for development.
Supports PostgreSQL (asyncpg) for production.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends
from sqlalchemy import event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.orm.exc import StaleDataError

from .config import settings
from .errors import ConflictError


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def configure_sqlite(engine: AsyncEngine) -> None:
    """Enable foreign keys and WAL mode on every new SQLite connection."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=30000")
        cursor.close()


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with the connection settings the URL needs."""
    if _is_sqlite(url):
        engine = create_async_engine(
            url,
            echo=echo,
            connect_args={
                "timeout": 30,  # Wait up to 30 seconds for locks
                "check_same_thread": False,
            },
        )
        configure_sqlite(engine)
        return engine
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


engine = create_engine_for(settings.database_url, echo=settings.debug)

# Session factory
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def get_session_factory() -> async_sessionmaker:
    """Dependency returning the session factory used by pipelines and jobs."""
    return async_session


async def get_db(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> AsyncIterator[AsyncSession]:
    """Dependency to get database session."""
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Commit everything written inside the block, or nothing.

    Uniqueness violations and optimistic-lock failures are rolled back
    and surfaced as ConflictError.
    """
    try:
        yield session
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        raise ConflictError(f"Write conflicts with existing data: {e.orig}") from e
    except StaleDataError as e:
        await session.rollback()
        raise ConflictError("Entity was modified concurrently; retry the operation") from e
    except BaseException:
        await session.rollback()
        raise


async def init_db(bind: AsyncEngine = None) -> None:
    """Initialize database tables."""
    from . import models  # noqa: F401  (registers tables on Base.metadata)

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
