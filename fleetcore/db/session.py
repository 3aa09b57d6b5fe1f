"""
Engine, session factory and declarative base.

Sessions never expire loaded rows on commit and never autoflush: every
write path flushes explicitly inside its serialized block, so nothing
reaches the database before the keys guarding it are held.
"""

from typing import Any, Dict

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from fleetcore.core.config import settings


def engine_options(database_url: str) -> Dict[str, Any]:
    """
    Keyword arguments for create_async_engine.

    SQLite (local runs, tests) gets no pool sizing; server databases get the
    configured pool and pre-ping, so a dropped connection surfaces as a
    retryable storage error instead of a stale socket.
    """
    options: Dict[str, Any] = {"echo": settings.db_echo}
    if make_url(database_url).get_backend_name() == "sqlite":
        return options
    options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
    )
    return options


engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db():
    """FastAPI dependency: one session per request."""
    async with AsyncSessionLocal() as session:
        yield session
