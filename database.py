"""
Database Configuration and Session Management
============================================

Async engine, session factory and table creation for the wallet engine's
key-value persistence. Sessions never block the event loop: SQLite runs
through aiosqlite and PostgreSQL through asyncpg.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config import Config
from models import Base

logger = logging.getLogger(__name__)


def to_async_url(database_url: str) -> str:
    """Map a plain database URL onto its async driver"""
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    if database_url.startswith("postgresql://"):
        async_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        # asyncpg uses 'ssl' instead of 'sslmode' parameter
        async_url = async_url.replace("sslmode=require", "ssl=require")
        async_url = async_url.replace("sslmode=prefer", "ssl=prefer")
        async_url = async_url.replace("sslmode=disable", "ssl=disable")
        return async_url

    return database_url


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine; in-memory SQLite shares a single connection"""
    if not database_url:
        raise ValueError("DATABASE_URL environment variable is required")

    async_url = to_async_url(database_url)

    if async_url.startswith("sqlite") and ":memory:" in async_url:
        return create_async_engine(
            async_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )

    if async_url.startswith("sqlite"):
        return create_async_engine(async_url, echo=False)

    return create_async_engine(
        async_url,
        pool_pre_ping=True,    # Validate connections before use
        pool_recycle=3600,     # Recycle connections every hour
        echo=False,
    )


async_engine = build_engine(Config.DATABASE_URL)


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """Async session factory bound to a specific engine (tests, alternate stores)"""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


AsyncSessionLocal = create_session_factory(async_engine)


async def create_tables(bind: Optional[AsyncEngine] = None) -> bool:
    """Create all database tables if they don't exist"""
    target = bind or async_engine
    logger.info("🏗️ Creating database tables (if they don't exist)...")
    logger.info(f"📊 Found {len(Base.metadata.tables)} table models to create")

    async with target.begin() as connection:
        await connection.run_sync(Base.metadata.create_all, checkfirst=True)
        existing_tables = await connection.run_sync(
            lambda sync_connection: inspect(sync_connection).get_table_names()
        )

    logger.info(f"✅ Database schema verified: {len(existing_tables)} tables available")
    return True


@asynccontextmanager
async def async_managed_session(session_factory: Optional[async_sessionmaker] = None):
    """Async context manager for database sessions"""
    session = (session_factory or AsyncSessionLocal)()
    try:
        yield session
        await session.commit()
    except Exception as e:
        logger.error(f"Database session error: {e}")
        await session.rollback()
        raise
    finally:
        await session.close()


async def verify_connection(bind: Optional[AsyncEngine] = None) -> bool:
    """Test database connection"""
    try:
        async with (bind or async_engine).connect() as connection:
            await connection.execute(text("SELECT 1"))
            logger.info("✅ Database connection test successful")
            return True
    except Exception as e:
        logger.error(f"❌ Database connection test failed: {e}")
        return False
