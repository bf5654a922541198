from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.ext.asyncio import create_async_engine

from mealshare_api.core.settings import settings

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def get_metadata():
    import mealshare_api.models  # noqa: F401 (registers tables)
    from mealshare_api.db.base import Base

    return Base.metadata


def get_database_url() -> str:
    """``alembic -x database_url=...`` wins over DATABASE_URL."""

    return context.get_x_argument(as_dictionary=True).get("database_url") or settings.database_url


def _configure(**kwargs) -> None:
    url = make_url(get_database_url())
    context.configure(
        target_metadata=get_metadata(),
        compare_type=True,
        # SQLite cannot ALTER most constraints in place.
        render_as_batch=url.get_backend_name() == "sqlite",
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL for the configured database without connecting."""
    _configure(url=get_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})

    with context.begin_transaction():
        context.run_migrations()


def _run_sync_migrations(connection: Connection) -> None:
    _configure(connection=connection)

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Migrate through the same async driver (aiosqlite or asyncpg) the API uses."""
    connectable = create_async_engine(get_database_url(), poolclass=pool.NullPool)

    async with connectable.connect() as connection:
        await connection.run_sync(_run_sync_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
