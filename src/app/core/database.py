"""Async SQLAlchemy engine for the CRM database.

Provides:
- CRMBase: Declarative base for the externally owned CRM tables
- get_session(): AsyncSession factory used by record sources
- check_database_connection(): SELECT 1 connectivity probe
- close_db(): Engine disposal on shutdown

This service never creates or migrates the CRM tables; they are owned by the
upstream application and only read here.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import structlog
from sqlalchemy import MetaData, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.app.config import get_settings

logger = structlog.get_logger(__name__)

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=20,
            max_overflow=10,
            pool_pre_ping=True,
            echo=False,
        )
    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────

crm_metadata = MetaData()


class CRMBase(DeclarativeBase):
    """Base class for read-only mappings of the upstream CRM tables."""

    metadata = crm_metadata


# ── Session Factory ─────────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession bound to the CRM engine."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


# ── Health / Shutdown ───────────────────────────────────────────────────────


async def check_database_connection() -> bool:
    """Return True if the database answers SELECT 1."""
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.warning("database.connection_check_failed", exc_info=True)
        return False


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
