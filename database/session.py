"""
Global async engine and session factory for the SysTrack database.

The URL from `database.url` may name a sync driver; it is mapped onto the
async one before the engine is built:
  postgresql:// / postgres://   → postgresql+asyncpg://
  mysql:// / mysql+pymysql://   → mysql+aiomysql://
  sqlite://                     → sqlite+aiosqlite://

Every role calls `close_db()` on shutdown. `ServiceStore` opens its own
transactional sessions from `get_session_factory()`.
"""
from __future__ import annotations

import structlog

from sqlalchemy.ext.asyncio import (
    create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker,
)

from config.settings import get_settings
from database.models import Base

logger = structlog.get_logger()

_ASYNC_DRIVERS = (
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
    ("mysql://", "mysql+aiomysql://"),
    ("mysql+pymysql://", "mysql+aiomysql://"),
    ("sqlite://", "sqlite+aiosqlite://"),
)

# pool settings for server databases; SQLite uses the default pool
_POOL_OPTIONS = {
    "pool_size": 10,
    "max_overflow": 20,
    "pool_timeout": 30,
    "pool_recycle": 1800,
    "pool_pre_ping": True,
}

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _to_async_url(db_url: str) -> str:
    for sync_prefix, async_prefix in _ASYNC_DRIVERS:
        if db_url.startswith(sync_prefix):
            return async_prefix + db_url[len(sync_prefix):]
    return db_url


def _redact(url: str) -> str:
    return url.split("@")[-1]


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, building it from settings on first use."""
    global _engine
    if _engine is None:
        db = get_settings().database
        url = _to_async_url(db.url)
        options = {} if url.startswith("sqlite") else dict(_POOL_OPTIONS)
        _engine = create_async_engine(url, echo=db.echo, **options)
        logger.info("database_engine_created",
                    dialect=_engine.dialect.name, url=_redact(str(_engine.url)))
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create the services and service_logs tables if missing."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized",
                dialect=engine.dialect.name,
                tables=sorted(Base.metadata.tables))


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("database_closed")
