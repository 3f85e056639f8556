from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine
from sqlalchemy import pool
from sqlalchemy import text

# this is the Alembic Config object, which provides
# access to the values within the .ini file in use.
config = context.config

# migrate_db() also runs inside the API process, whose logging is already configured.
if config.config_file_name is not None and config.attributes.get("configure_logger", True):
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def _sync_database_url() -> str:
    """
    Alembic runs with a sync SQLAlchemy engine.

    `postgresql+asyncpg://` becomes `postgresql+psycopg://` and `sqlite+aiosqlite://`
    becomes plain `sqlite://`.
    """
    url = config.get_main_option("sqlalchemy.url") or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required for alembic")
    return url.replace("+asyncpg", "+psycopg").replace("+aiosqlite", "")


# Import models so metadata is populated for autogenerate.
from wgsync.db import Base  # noqa: E402
import wgsync.models  # noqa: F401,E402

target_metadata = Base.metadata

# Several API replicas may start at once against the same PostgreSQL database.
MIGRATION_ADVISORY_LOCK_KEY = 51820001


def run_migrations_offline() -> None:
    """Emit SQL to stdout without connecting."""
    context.configure(
        url=_sync_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(_sync_database_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        if connection.dialect.name == "postgresql":
            # Transaction-scoped, released on commit/rollback.
            connection.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": MIGRATION_ADVISORY_LOCK_KEY})

        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
