"""Database engine construction and lifecycle for the QR links service.

This module builds the SQLAlchemy async engine and session factory that the
``ServiceManager`` owns for the lifetime of the process. Nothing here is a
module-level singleton: callers pass ``Settings`` in and keep the handles.

Flow Diagram — Database Operations
=================================
::
    ┌─────────────┐
    │ ServiceMgr  │
    │ initialize()│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ build_engine│
    │ (pool)      │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ init_db()    │
    │ create_all  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ get_db()     │
    │ per request │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ close_db()   │
    │ dispose     │
    └─────────────┘

How to Use
===========
**Step 1 — Build on startup**::
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    await init_db(engine)

**Step 2 — Open a session**::
    async with session_factory() as session:
        result = await session.execute(select(Link))

**Step 3 — Cleanup on shutdown**::
    await close_db(engine)

Key Behaviours
===============
- PostgreSQL engines get a bounded pool with pre-ping and a checkout timeout.
- SQLite engines (local runs, tests) open a connection per session.
- Sessions do not expire objects on commit so responses can be built after it.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    build_engine():  Creates the async engine from settings.
    build_session_factory():  Creates the session factory bound to an engine.
    init_db():  Creates all tables.
    close_db():  Disposes the engine.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from qrlinks.config import Settings

__all__ = ["Base", "build_engine", "build_session_factory", "init_db", "close_db"]


class Base(DeclarativeBase):
    pass


def build_engine(settings: Settings) -> AsyncEngine:
    echo = settings.APP_ENV == "development"
    if settings.DATABASE_URL.startswith("sqlite"):
        return create_async_engine(settings.DATABASE_URL, echo=echo, poolclass=NullPool)

    return create_async_engine(
        settings.DATABASE_URL,
        echo=echo,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT_SECONDS,
        pool_pre_ping=True,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    # Importing the models registers their tables on Base.metadata.
    import qrlinks.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    await engine.dispose()
