"""
Database Infrastructure
=======================

Engine and session lifecycle for the triage store.

PostgreSQL through asyncpg in deployments, aiosqlite for local runs and
tests. Repositories never hold a session across awaits on other services:
each call opens a short unit of work with ``get_session_context()``.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from helpdesk_triage.config import settings

_NOT_READY = "Triage database is not initialised; call init_database() during startup."


class Base(DeclarativeBase):
    """Declarative base for tickets, replies, suggestions, articles and audit rows."""


_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """Return the engine created by ``init_database``."""
    if _engine is None:
        raise RuntimeError(_NOT_READY)
    return _engine


def _engine_options(url: str) -> tuple[str, dict]:
    options: dict = {"echo": settings.debug}

    if url.startswith("sqlite"):
        # an in-memory database exists per connection
        if ":memory:" in url:
            from sqlalchemy.pool import StaticPool
            options["poolclass"] = StaticPool
            options["connect_args"] = {"check_same_thread": False}
        return url, options

    # asyncpg spells libpq's sslmode as ssl
    options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
    )
    return url.replace("sslmode=", "ssl="), options


def init_database(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create the engine and session maker.

    Args:
        database_url: Override for ``settings.database_url`` (tests pass a
            per-test SQLite file here)

    Returns:
        AsyncEngine: the new process-wide engine
    """
    global _engine, _session_maker

    url, options = _engine_options(database_url or settings.database_url)
    _engine = create_async_engine(url, **options)
    _session_maker = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return _engine


async def close_database() -> None:
    """Dispose of pooled connections; safe to call twice."""
    global _engine, _session_maker

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_maker = None


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    One unit of work: commit on clean exit, roll back and re-raise otherwise.

    Usage:
        async with get_session_context() as session:
            result = await session.execute(select(TicketModel))
    """
    if _session_maker is None:
        raise RuntimeError(_NOT_READY)

    async with _session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables() -> None:
    """Create the triage schema. Deployments manage the schema with migrations."""
    import helpdesk_triage.triage.infrastructure.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables() -> None:
    """Drop the triage schema (tests only)."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
