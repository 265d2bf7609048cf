"""
Database engine and sessions.

Two ways in:
* ``get_db`` - request-scoped session for the read/delete endpoints,
  committed when the request handler returns.
* ``get_session_factory`` - the factory itself, for report persistence,
  which opens one short transaction per save so a report is never tied to
  the lifetime of an HTTP request (streams outlive their handler).
"""
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from typing import AsyncGenerator
import logging

from app.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
    poolclass=NullPool,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session that commits on success."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error("Database session error: %s", e)
            raise


def get_session_factory() -> async_sessionmaker:
    """FastAPI dependency returning the session factory used for report saves."""
    return AsyncSessionLocal


async def init_db() -> None:
    """Create the users / reports / report_sections tables if missing."""
    from app.models import database_models  # noqa: F401  (registers the models)

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created/verified")
    except Exception as e:
        logger.error("Error initializing database: %s", e)
        raise


async def close_db() -> None:
    """Dispose of the engine on shutdown."""
    await engine.dispose()
    logger.info("Database connections closed")
