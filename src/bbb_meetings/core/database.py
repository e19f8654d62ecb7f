"""Async SQLAlchemy engine with multi-tenant schema isolation.

Provides:
- TenantBase: Declarative base for per-tenant schema tables (placeholder schema="tenant")
- get_tenant_session(): Session with schema_translate_map for tenant isolation
- check_database(): Connectivity check for the readiness endpoint
- Pool checkout event that resets session state (RESET ALL) to prevent stale leaks
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

import structlog
from sqlalchemy import MetaData, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.bbb_meetings.config import get_settings
from src.bbb_meetings.core.tenant import get_current_tenant

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
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_pre_ping=True,
        )

        @event.listens_for(_engine.sync_engine, "checkout")
        def reset_session_state(dbapi_conn: Any, connection_record: Any, connection_proxy: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("RESET ALL")
            cursor.close()

    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────

tenant_metadata = MetaData(schema="tenant")


class TenantBase(DeclarativeBase):
    """Base class for per-tenant schema models.

    Uses placeholder schema="tenant" which is remapped at runtime via
    schema_translate_map to the actual tenant schema (e.g., "tenant_oae").
    """

    metadata = tenant_metadata


# ── Session Factory ─────────────────────────────────────────────────────────


async def get_tenant_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a tenant-scoped AsyncSession.

    The placeholder "tenant" schema is mapped to the schema of the tenant
    in the current request context.
    """
    tenant = get_current_tenant()
    engine = get_engine()

    async with engine.connect() as conn:
        conn = await conn.execution_options(
            schema_translate_map={"tenant": tenant.schema_name}
        )
        async with AsyncSession(bind=conn, expire_on_commit=False) as session:
            yield session


async def check_database() -> str | None:
    """Run SELECT 1 on the shared engine. Returns None when healthy, else the error."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("database.ping_failed", error=str(exc))
        return str(exc)
    return None


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
