"""
Database engine and session management for the Litter Marketplace core.

SQLAlchemy async engine over aiosqlite. Tables are created on startup via
init_db(). SQLite connections get foreign keys switched on and a busy
timeout so concurrent finalize requests wait for the writer lock instead
of failing immediately.
"""
import logging

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def async_database_url(url: str) -> str:
    """sqlite:///... → sqlite+aiosqlite:///... ; other URLs pass through."""
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


def _sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


_url = async_database_url(settings.database_url)
engine = create_async_engine(_url, echo=False)
if _url.startswith("sqlite"):
    event.listen(engine.sync_engine, "connect", _sqlite_pragmas)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    """Create all tables. Called once on server startup."""
    import db_models  # noqa: F401  (registers the models on Base.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database tables ready ({engine.url.render_as_string(hide_password=True)})")


async def get_db() -> AsyncSession:
    """
    FastAPI dependency: yields a session per request.

    Routes commit explicitly; anything left uncommitted when the request
    fails is rolled back here.
    """
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
