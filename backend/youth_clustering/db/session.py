"""Database engine and session utilities.

Attributes:
    engine (AsyncEngine): Primary SQLModel async engine connected to SQLite.
    SessionLocal (async_sessionmaker): Factory for yielding AsyncSession objects.

Functions:
    init_db(): Create database tables and apply SQLite pragmas.
    get_session(): Dependency that yields an AsyncSession for request handlers.
"""

import logging
from collections.abc import AsyncGenerator
from pathlib import Path

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from youth_clustering.core.config import get_settings

_settings = get_settings()
_LOGGER = logging.getLogger(__name__)

if _settings.database_url.startswith("sqlite"):
    _db_path = Path(_settings.database_url.split(":///", 1)[-1]).resolve()
    if _db_path.parent.name:
        _db_path.parent.mkdir(parents=True, exist_ok=True)


engine: AsyncEngine = create_async_engine(
    _settings.database_url,
    echo=False,
    future=True,
    connect_args=(
        {"check_same_thread": False, "timeout": 30}
        if _settings.database_url.startswith("sqlite")
        else {}
    ),
)

SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(bind: AsyncEngine | None = None) -> None:
    target = bind or engine
    async with target.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
        if str(target.url).startswith("sqlite"):
            await _apply_sqlite_pragmas(conn)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session


def get_session_factory() -> async_sessionmaker:
    """Factory for work that outlives the request session, such as background runs."""

    return SessionLocal


async def _apply_sqlite_pragmas(conn) -> None:
    """WAL lets readers proceed while a run's write transaction is open."""

    try:
        await conn.exec_driver_sql("PRAGMA journal_mode=WAL")
        await conn.exec_driver_sql("PRAGMA synchronous=NORMAL")
        await conn.exec_driver_sql("PRAGMA busy_timeout=30000")
    except OperationalError:
        _LOGGER.debug("SQLite pragmas not applied", exc_info=True)
