"""
Database engine and session management with SQLAlchemy async
"""

from typing import Optional
from sqlalchemy import text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from core.config import settings
from core.exceptions import DatabaseConnectionError
import logging

logger = logging.getLogger(__name__)


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create the async engine for the configured database"""
    return create_async_engine(
        database_url or settings.DATABASE_URL,
        echo=False,
        poolclass=NullPool,
        future=True
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    """Create the session factory used by the pipeline"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


def dialect_insert(session: AsyncSession, model):
    """
    Dialect-specific INSERT for upserts.

    Both PostgreSQL and SQLite inserts expose on_conflict_do_nothing /
    on_conflict_do_update and RETURNING.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise ValueError(f"Unsupported database dialect for upserts: {dialect}")


async def check_connection(engine: AsyncEngine) -> None:
    """Run a trivial query so connection problems surface at startup"""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        raise DatabaseConnectionError(
            "Cannot connect to database",
            context={"database": engine.url.render_as_string(hide_password=True)},
            original_exception=e
        )
    logger.info(f"Database connected: {engine.url.render_as_string(hide_password=True)}")
