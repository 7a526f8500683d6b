"""
Database configuration and session management.
Uses PostgreSQL via asyncpg with SQLAlchemy 2 async engine (SQLite via aiosqlite in tests).
"""

import logging
import ssl
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text
from adsteward.config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def _get_connect_args(url: str) -> dict:
    """Enable SSL for hosted Postgres (rlwy.net proxy uses self-signed certs)."""
    if not url.startswith("postgresql"):
        return {}
    args = {"timeout": 30}  # Fail fast if DB unreachable
    if "rlwy.net" in url:
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        args["ssl"] = ctx
    return args


def create_engine(url: str) -> AsyncEngine:
    kwargs = dict(echo=False, pool_pre_ping=True, connect_args=_get_connect_args(url))
    if url.startswith("postgresql"):
        kwargs.update(pool_size=5, max_overflow=10)
    return create_async_engine(url, **kwargs)


class Database:
    """Owns the engine and session factory; every store call opens its own scope."""

    def __init__(self, url: Optional[str] = None, engine: Optional[AsyncEngine] = None):
        self.engine = engine or create_engine(url or get_settings().database_url)
        self.sessionmaker = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Transactional scope: commit on success, rollback on any error."""
        async with self.sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init_db(self):
        """
        Create all tables defined in models.
        Uses create_all which only creates tables that don't exist yet.
        """
        # Import models to ensure they are registered with Base.metadata
        import adsteward.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Database initialized with {len(Base.metadata.tables)} tables: "
                    f"{', '.join(Base.metadata.tables.keys())}")

    async def drop_and_recreate(self):
        """Drop all tables and recreate them. Only allowed outside production."""
        if get_settings().is_production:
            raise RuntimeError(
                "drop_and_recreate() is disabled in production. "
                "Use Alembic migrations instead."
            )

        import adsteward.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database dropped and recreated.")

    async def check_connection(self) -> bool:
        """Test database connectivity."""
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            return False

    async def dispose(self):
        await self.engine.dispose()
