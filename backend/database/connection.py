from typing import Optional, AsyncIterator
import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text

from config import get_settings

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


class Base(DeclarativeBase):
    pass


def get_engine() -> AsyncEngine:
    """Create the async engine on first use from settings."""
    global _engine
    if _engine is None:
        url = get_settings().get_database_url()
        options = {"echo": False, "pool_pre_ping": True}
        if url.startswith("postgresql"):
            options.update(pool_size=5, max_overflow=10)
        _engine = create_async_engine(url, **options)
    return _engine


def get_session_factory() -> async_sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False
        )
    return _session_factory


async def get_db() -> AsyncIterator[AsyncSession]:
    """Dependency to get database session"""
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(validate_schema: bool = True):
    """Verify the connection, then check the live schema against the descriptor."""
    from .schema import ensure_schema

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("Database connection successful")

            if validate_schema:
                await ensure_schema(conn)
        return True
    except Exception as e:
        logger.error(f"Database initialization error: {e}")
        raise


async def dispose_engine():
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
