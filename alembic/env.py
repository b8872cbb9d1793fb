"""Alembic environment for the harvester schema.

Migrates the crawl ledger (crawl_tasks, crawl_logs) and the observation
tables (projects, project_tombstones, project_snapshots, project_trades)
through the async engine: asyncpg in production, aiosqlite for local runs.
SQLite databases are migrated in batch mode since they cannot ALTER columns.
"""

from __future__ import annotations

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from copytrade_harvester.config import DatabaseSettings
from copytrade_harvester.storage.database import normalize_async_database_url
from copytrade_harvester.storage.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# same .env the harvester CLI reads
load_dotenv(override=False)

target_metadata = Base.metadata


def _resolve_database_url() -> str | None:
    """SQLALCHEMY_DATABASE_URL wins; otherwise the validated DATABASE_URL, if set."""
    override = os.environ.get("SQLALCHEMY_DATABASE_URL")
    if override:
        return normalize_async_database_url(os.path.expandvars(override))
    if not os.environ.get("DATABASE_URL"):
        return None
    return normalize_async_database_url(DatabaseSettings().url)


database_url = _resolve_database_url()
if database_url:
    config.set_main_option("sqlalchemy.url", database_url)


def _is_sqlite(url: str | None) -> bool:
    return bool(url) and url.startswith("sqlite")  # type: ignore[union-attr]


def run_migrations_offline() -> None:
    """Emit SQL for the configured URL without connecting."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=_is_sqlite(url),
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def _do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=connection.dialect.name == "sqlite",
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


async def _run_migrations_online_async() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(_do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    """Apply migrations over an async connection."""
    asyncio.run(_run_migrations_online_async())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
