"""
Database engine and session management
"""

from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from core.config import settings
from core.logging import get_logger
from models.records import Base

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def configure_engine(url: str = None, **kwargs) -> async_sessionmaker:
    """Create the global engine and session factory"""
    global _engine, _session_factory

    url = url or settings.DATABASE_URL
    engine_kwargs = {"echo": settings.DATABASE_ECHO, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        engine_kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
    engine_kwargs.update(kwargs)

    _engine = create_async_engine(url, **engine_kwargs)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _session_factory


def get_session_factory() -> async_sessionmaker:
    if _session_factory is None:
        configure_engine()
    return _session_factory


async def init_db(create_tables: bool = False) -> None:
    """
    Initialize database connectivity

    Tables are normally managed by migrations; create_tables is used for
    local development and tests.
    """
    get_session_factory()
    if create_tables:
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized", url=_engine.url.render_as_string(hide_password=True))


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a database session

    Usage:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    factory = get_session_factory()
    async with factory() as session:
        yield session
