"""Async SQLAlchemy engine and session factory (leaf module).

``build_db`` is a lifespan dependency: it creates the engine +
session factory, attaches them to ``app.state``, and disposes the
engine on shutdown.  Per-request dependencies read from ``app.state``.

Kept outside the ``db`` package so that ``telemetry`` can
``Depends(build_db)`` without importing the repositories (which import
``telemetry`` themselves).
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, FastAPI, Request
from pgvector.asyncpg import register_vector
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from medifly.configs.config import AppConfig, get_app_config
from medifly.infra.lifespan import get_app

# ---------------------------------------------------------------------------
# Lifespan dependency
# ---------------------------------------------------------------------------


async def build_db(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> AsyncGenerator[None, None]:
    """Create engine + session factory, attach to ``app.state``."""
    tp = config.third_party
    engine = create_async_engine(
        tp.postgres_uri,
        pool_pre_ping=True,
        pool_size=tp.postgres_pool_size,
        max_overflow=tp.postgres_max_overflow,
    )

    # pgvector codec so vector columns and parameters round-trip as lists.
    @event.listens_for(engine.sync_engine, "connect")
    def _register_vector(dbapi_connection, _record):  # noqa: ANN001
        dbapi_connection.run_async(register_vector)

    factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
        engine, expire_on_commit=False
    )
    app.state.engine = engine
    app.state.session_factory = factory
    yield
    await engine.dispose()


# ---------------------------------------------------------------------------
# Per-request dependencies, read from app.state
# ---------------------------------------------------------------------------


def get_session_factory(
    request: Request,
) -> async_sessionmaker[AsyncSession]:
    """Return the ``async_sessionmaker`` from ``app.state``."""
    return request.app.state.session_factory
