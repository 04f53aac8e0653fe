"""
Database Layer - Async SQLAlchemy engine + session factory.
"""
import logging
from typing import Optional
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import DATABASE_URL as _RAW_DATABASE_URL

logger = logging.getLogger("vesselcost-db")


def normalize_database_url(url: str) -> str:
    """Route plain postgres URLs through the asyncpg driver."""
    if url.startswith("postgresql://") and "+asyncpg" not in url:
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


DATABASE_URL = normalize_database_url(_RAW_DATABASE_URL)


class Base(DeclarativeBase):
    pass


def make_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        # SQLite has no connection pool to size
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        echo=False,
        pool_timeout=5,
    )


engine = make_engine(DATABASE_URL)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db(bind: Optional[AsyncEngine] = None):
    """Create missing tables."""
    from app.models import orm_models  # noqa: F401
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized.")
