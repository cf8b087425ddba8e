"""
Database Management and Configuration.

Async SQLAlchemy engine and session factory for the Scrape API, configured from
the `DATABASE_URL` environment variable. SQLite (via `aiosqlite`) is the default
for development; PostgreSQL (via `asyncpg`) is supported for production.

Key Components:
- `engine` / `async_session`: process-wide engine and session factory.
- `create_db_and_tables`: startup hook creating the SQLModel tables.
- `get_database_info`: diagnostics for the health endpoints.

SQLite only enforces foreign keys when asked to on every connection, so
`enable_sqlite_foreign_keys` hooks the pool's connect event; without it deleting
an influencer would leave its posts and scrape logs behind.
"""

import os
import logging
from sqlalchemy import event, text
from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import AsyncAdaptedQueuePool

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./scraper.db")

logger = logging.getLogger(__name__)


def enable_sqlite_foreign_keys(async_engine: AsyncEngine) -> None:
    """Turn on `PRAGMA foreign_keys` for every new SQLite connection"""

    @event.listens_for(async_engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(database_url: str, **kwargs) -> AsyncEngine:
    """Create an async engine with the settings used by the service"""
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        kwargs.setdefault("poolclass", AsyncAdaptedQueuePool)
        async_engine = create_async_engine(database_url, echo=False, **kwargs)
        enable_sqlite_foreign_keys(async_engine)
        return async_engine

    return create_async_engine(
        database_url,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Validate connections before use
        echo=False,
        **kwargs,
    )


engine = build_engine(DATABASE_URL)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_db_and_tables(async_engine: AsyncEngine = None):
    """
    Initialize the database and create all tables.
    Called during application startup.
    """
    # Register table metadata before create_all
    import core.models  # noqa: F401

    target = async_engine or engine
    try:
        async with target.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("Scrape API database tables created successfully")
    except Exception as e:
        logger.error(f"Failed to create Scrape API database tables: {e}")
        raise


async def get_database_info():
    """
    Get basic database information for health checks.
    """
    try:
        async with async_session() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            connection_healthy = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        connection_healthy = False

    return {
        "database_url": DATABASE_URL.split("@")[1]
        if "@" in DATABASE_URL
        else "masked",  # Hide credentials
        "connection_healthy": connection_healthy,
        "database_type": "postgresql" if "postgresql" in DATABASE_URL else "sqlite",
    }
