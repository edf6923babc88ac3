from __future__ import annotations

from typing import AsyncGenerator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from backoffice.core.config import settings
from backoffice.core.exceptions import DatabaseError
from backoffice.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

# Global engine instance, created lazily on first use
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker[AsyncSession]] = None


def create_database_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create and configure the async database engine."""
    global engine, AsyncSessionLocal

    if engine is not None:
        return engine

    url = database_url or settings.database_url
    is_postgres = url.startswith("postgresql")

    if settings.is_testing or not is_postgres:
        # Use NullPool for tests to ensure clean state
        engine = create_async_engine(url, poolclass=NullPool, echo=settings.debug)
    else:
        # Production/development pool configuration
        engine = create_async_engine(
            url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
            pool_pre_ping=True,  # Verify connections before using
            echo=settings.debug,
            connect_args={
                "command_timeout": 60,
                "server_settings": {"application_name": "backoffice_api"},
            },
        )

    AsyncSessionLocal = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info(
        "database.engine.created",
        dialect=engine.dialect.name,
        pool_size=settings.database_pool_size if is_postgres else None,
        testing=settings.is_testing,
    )

    return engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Session factory for code running outside a request (postback worker)."""
    if AsyncSessionLocal is None:
        create_database_engine()
    return AsyncSessionLocal


async def dispose_engine() -> None:
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
        logger.info("database.connection_closed")
    engine = None
    AsyncSessionLocal = None


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session for dependency injection."""
    session = get_sessionmaker()()

    try:
        yield session
    except SQLAlchemyError as e:
        logger.error("database.session_error", error=str(e))
        await session.rollback()
        raise DatabaseError(
            message="Database session error",
            details={"error": str(e)} if settings.is_development else {},
        ) from e
    finally:
        await session.close()

