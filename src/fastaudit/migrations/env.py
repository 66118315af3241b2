"""
Alembic environment for fastaudit.

Connects to the audit database in online mode or renders SQL in offline
mode. Supports SQLite (batch mode) and PostgreSQL.
"""

import os
from logging.config import fileConfig
from pathlib import Path

from alembic import context

# this is the Alembic Config object
config = context.config

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def get_database_url() -> str:
    """Get the database URL for migrations.

    Priority:
    1. sqlalchemy.url set on the Alembic config
    2. FASTAUDIT_DATABASE_URL environment variable
    3. .fastaudit/audit.db in the current directory
    """
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url

    env_url = os.environ.get("FASTAUDIT_DATABASE_URL")
    if env_url:
        return env_url

    db_path = Path.cwd() / ".fastaudit" / "audit.db"
    return f"sqlite:///{db_path}"


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode, emitting SQL without a connection."""
    context.configure(
        url=get_database_url(),
        target_metadata=None,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode against a live connection."""
    from sqlalchemy import create_engine, pool

    url = get_database_url()
    is_sqlite = url.startswith("sqlite")

    connectable = create_engine(url, poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=None,
            render_as_batch=is_sqlite,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
