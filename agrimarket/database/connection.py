"""
Async database engine and session management.

One engine and one session factory are created lazily per process. Sessions
keep their objects loaded after commit, because the lifecycle service hands
committed orders, bookings and tickets straight to the response layer.
"""

import asyncio
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from agrimarket.core.config import Settings, get_settings
from agrimarket.core.logging import get_logger

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def async_database_url(url: str) -> str:
    """Point a plain PostgreSQL URL at the asyncpg driver."""
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


def _engine_options(url: str, settings: Settings) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.debug}

    # SQLite files and test runs get no pool; connections are cheap there
    if url.startswith("sqlite") or settings.is_test:
        options["poolclass"] = NullPool
        return options

    options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        connect_args={
            "server_settings": {"application_name": settings.app_name},
            "command_timeout": 60,
            "timeout": 10,
        },
    )
    return options


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create an async engine for the configured or given database.

    Args:
        database_url: Override for the configured database URL

    Returns:
        Async engine with pooling suited to the backend
    """
    settings = get_settings()
    url = async_database_url(database_url or settings.database_url)
    engine = create_async_engine(url, **_engine_options(url, settings))

    logger.info(
        "Database engine created",
        dialect=engine.dialect.name,
        pooled=not url.startswith("sqlite") and not settings.is_test,
        environment=settings.environment,
    )
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    """
    Return the process-wide engine, creating it on first use.

    Raises:
        RuntimeError: If the engine cannot be created
    """
    global _engine

    if _engine is None:
        try:
            _engine = create_engine()
        except (SQLAlchemyError, ValueError) as e:
            logger.error(
                "Failed to create database engine",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RuntimeError(f"Database engine initialization failed: {e}") from e

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory

    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a request-scoped session.

    Commits when the request completes and rolls back if it raised.

    Yields:
        Async database session
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.warning(
                "Database session rolled back",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise


async def check_database_health(max_retries: int = 3, retry_delay: float = 1.0) -> bool:
    """
    Run ``SELECT 1`` with exponential backoff between attempts.

    Connection errors are retried; any other SQLAlchemy error fails at once.

    Args:
        max_retries: Number of attempts
        retry_delay: Delay before the second attempt, doubled afterwards

    Returns:
        True if the database answered, False otherwise
    """
    delay = retry_delay
    for attempt in range(1, max_retries + 1):
        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (OperationalError, DBAPIError) as e:
            logger.warning(
                "Database health check failed",
                attempt=attempt,
                max_retries=max_retries,
                error=str(e),
            )
        except SQLAlchemyError as e:
            logger.error(
                "Database health check failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        if attempt < max_retries:
            await asyncio.sleep(delay)
            delay *= 2

    return False


async def close_database_connections() -> None:
    """Dispose of the engine at shutdown; a later call recreates it."""
    global _engine, _session_factory

    if _engine is None:
        return
    try:
        await _engine.dispose()
        logger.info("Database connections closed")
    finally:
        _engine = None
        _session_factory = None
