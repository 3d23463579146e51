"""
Alembic Environment Configuration for CareConnect

- Async engine built from DATABASE_URL (asyncpg or aiosqlite)
- Autogenerate only touches tables declared in careconnect models; the
  Supabase auth/storage schemas in the same database are never diffed
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel

from careconnect.config.settings import settings
from careconnect.infrastructure.db.database import normalize_database_url

# Registers every table with SQLModel.metadata
from careconnect.infrastructure.db import models  # noqa: F401


config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata
MANAGED_TABLES = frozenset(target_metadata.tables)


def include_object(object, name, type_, reflected, compare_to):
    """Ignore reflected tables CareConnect does not own."""
    if type_ == "table":
        return name in MANAGED_TABLES
    table = getattr(object, "table", None)
    if table is not None:
        return table.name in MANAGED_TABLES
    return True


def get_url() -> str:
    url = config.get_main_option("sqlalchemy.url") or settings.database_url
    if not url:
        raise ValueError("DATABASE_URL is required to run migrations")
    return normalize_database_url(url)


def run_migrations_offline() -> None:
    """Emit SQL to stdout without connecting."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_object=include_object,
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        include_object=include_object,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    connectable = create_async_engine(get_url(), poolclass=pool.NullPool)

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
