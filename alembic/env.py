"""Alembic environment for the transactions store.

The database URL is taken, in order, from ``-x database_url=...``, the
``DATABASE_URL`` setting of the application (``.env`` included) and
finally ``sqlalchemy.url`` in alembic.ini. Online migrations run through
the same async engine factory the application uses.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection

from solana_tax_tracker.config import get_settings
from solana_tax_tracker.storage.database import create_async_db_engine
from solana_tax_tracker.storage.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def resolve_database_url() -> str:
    override = context.get_x_argument(as_dictionary=True).get("database_url")
    url = override or get_settings().database.url or config.get_main_option("sqlalchemy.url")
    if not url:
        raise RuntimeError("No database URL: set DATABASE_URL or pass -x database_url=...")
    return url


def run_migrations_offline(url: str) -> None:
    """Emit SQL for the migrations without connecting."""
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online(url: str) -> None:
    engine = create_async_db_engine(url, poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


database_url = resolve_database_url()
if context.is_offline_mode():
    run_migrations_offline(database_url)
else:
    asyncio.run(run_migrations_online(database_url))
