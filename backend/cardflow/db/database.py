"""
Database connection and session management.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from cardflow.core.config import settings

logger = structlog.get_logger()


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class DatabaseError(Exception):
    """Custom database error for better error handling"""

    def __init__(self, message: str, original_error: Exception | None = None):
        self.message = message
        self.original_error = original_error
        super().__init__(self.message)


engine = create_async_engine(
    settings.database_url,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_recycle=3600,
    connect_args={
        "command_timeout": 60,
        "server_settings": {
            "application_name": settings.app_name.lower().replace(" ", "_"),
            "jit": "off",
        },
    },
)

# Session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for getting a database session in worker jobs.
    """
    session = async_session_maker()
    try:
        yield session
    except SQLAlchemyError as e:
        logger.error("database_session_error", error=str(e))
        await session.rollback()
        raise DatabaseError(f"Database operation failed: {e}", original_error=e) from e
    finally:
        await session.close()


async def init_db() -> None:
    """Create tables if they do not exist yet.

    Several workers may start at once; a duplicate-object error from a
    concurrent create is treated as success.
    """
    try:
        async with engine.begin() as conn:
            await conn.run_sync(lambda sync_conn: Base.metadata.create_all(sync_conn, checkfirst=True))
        logger.info("database_tables_initialized")
    except SQLAlchemyError as e:
        error_str = str(e)
        if "duplicate key value violates unique constraint" in error_str and "pg_type_typname_nsp_index" in error_str:
            logger.info("database_tables_created_by_another_worker")
        else:
            logger.error("database_init_failed", error=error_str)
            raise


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
