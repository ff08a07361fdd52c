"""Alembic environment configuration, async-aware.

The database URL comes from ``MEDIFLY_THIRD_PARTY__POSTGRES_URI`` or,
when unset, the ``ThirdPartyConfig`` default, so migrations and the
service always point at the same database.

Objects created with raw SQL (the HNSW vector index and the
``find_similar_hospitals`` function) are invisible to the ORM metadata;
``include_object`` keeps ``--autogenerate`` from proposing to drop them.
"""

import asyncio
import os

from alembic import context
from sqlalchemy.ext.asyncio import create_async_engine

from medifly.infra.db.models import Base

target_metadata = Base.metadata

DATABASE_URL_ENV = "MEDIFLY_THIRD_PARTY__POSTGRES_URI"
RAW_SQL_INDEXES = frozenset({"ix_hospitals_embedding_hnsw"})


def _get_database_url() -> str:
    url = os.environ.get(DATABASE_URL_ENV)
    if url:
        return url
    from medifly.configs.system import ThirdPartyConfig

    return ThirdPartyConfig().postgres_uri


def include_object(obj, name, type_, reflected, compare_to) -> bool:  # noqa: ANN001
    return not (type_ == "index" and name in RAW_SQL_INDEXES)


def _configure(**kwargs) -> None:  # noqa: ANN003
    context.configure(
        target_metadata=target_metadata,
        include_object=include_object,
        compare_type=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL without a live database."""
    _configure(
        url=_get_database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:  # noqa: ANN001
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_async_engine(_get_database_url())
    async with engine.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
