"""
Async database setup using SQLModel with aiosqlite.
"""

from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from typing import AsyncGenerator
from bluecarbon.models import *

from bluecarbon.core.config import get_settings

settings = get_settings()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; SQLite connections wait on the write lock instead of failing."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"timeout": settings.sqlite_busy_timeout}
    return create_async_engine(database_url, echo=echo, connect_args=connect_args)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        expire_on_commit=False,
        class_=AsyncSession
    )


# Create async engine
engine = build_engine(settings.database_url, echo=settings.debug)

AsyncSessionLocal = build_session_factory(engine)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Initialize database tables."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database session."""
    async with AsyncSessionLocal() as session:
        yield session
