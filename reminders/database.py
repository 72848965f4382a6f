"""
Async database access for the reminder service.

The service reads the booking API's Postgres database and writes only the
notifications table. It is idle for most of the day between daily runs, so
pooled connections are pinged before use and kept few.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from .tables import metadata  # noqa: F401 - exported for schema tooling

logger = logging.getLogger(__name__)

ASYNC_DRIVER_PREFIX = "postgresql+asyncpg://"

# Created on first use, disposed by close_engine()
_engine: AsyncEngine | None = None


def _get_database_url() -> str:
    """
    Read DATABASE_URL and point it at the asyncpg driver.

    Accepts postgresql://, postgres:// (Heroku-style) or an explicit
    postgresql+asyncpg:// URL.
    """
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable must be set.")

    for scheme in ("postgresql://", "postgres://"):
        if database_url.startswith(scheme):
            return ASYNC_DRIVER_PREFIX + database_url[len(scheme):]

    return database_url


def get_engine() -> AsyncEngine:
    """Get or create the async SQLAlchemy engine singleton."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            _get_database_url(),
            echo=os.environ.get("SQL_ECHO", "").lower() == "true",
            pool_size=int(os.environ.get("DB_POOL_SIZE", "5")),
            max_overflow=int(os.environ.get("DB_MAX_OVERFLOW", "5")),
            pool_timeout=30,
            pool_pre_ping=True,  # Connections sit idle between daily runs
            pool_recycle=1800,
        )
    return _engine


@asynccontextmanager
async def get_connection() -> AsyncGenerator[AsyncConnection, None]:
    """
    Pooled connection for reads.

    Usage:
        async with get_connection() as conn:
            result = await conn.execute(select(notifications))
    """
    async with get_engine().connect() as conn:
        yield conn


@asynccontextmanager
async def get_transaction() -> AsyncGenerator[AsyncConnection, None]:
    """Pooled connection inside a transaction; commits on success, rolls back on error."""
    async with get_engine().begin() as conn:
        yield conn


async def ping() -> bool:
    """True if the database answers a trivial query."""
    if not is_configured():
        return False
    try:
        async with get_connection() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Database ping failed: {e}")
        return False
    return True


async def close_engine() -> None:
    """Close the engine and all connections. Call on shutdown."""
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None


def is_configured() -> bool:
    return bool(os.environ.get("DATABASE_URL"))
