"""
Database configuration and session management.
Uses PostgreSQL via asyncpg with SQLAlchemy 2 async engine.
SQLite (aiosqlite) URLs are accepted for local runs and tests.
"""

import logging
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from trackprofit.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine; SQLite gets no pool tuning (single-file driver)."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        connect_args={"timeout": 30},  # Fail fast if DB unreachable
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.database_url)

async_session = build_session_factory(engine)


class Base(DeclarativeBase):
    pass


def dialect_insert(session: AsyncSession, model):
    """
    Return a dialect-specific INSERT construct for ``model`` so callers can use
    ``on_conflict_do_nothing`` / ``on_conflict_do_update`` on both Postgres and SQLite.
    """
    if session.bind.dialect.name == "postgresql":
        return postgresql.insert(model)
    return sqlite.insert(model)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency returning the process-wide session factory (overridden in tests)."""
    return async_session


async def init_db(bind: AsyncEngine | None = None):
    """
    Create all tables defined in models.
    create_all only creates tables that don't exist yet.
    """
    # Import models to ensure they are registered with Base.metadata
    import trackprofit.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

        logger.info(f"Database initialized with {len(Base.metadata.tables)} tables: "
                    f"{', '.join(Base.metadata.tables.keys())}")


async def check_db_connection() -> bool:
    """Test database connectivity."""
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
