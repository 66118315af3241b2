"""
fastaudit database migrations.

Alembic revisions that create and evolve the ``audit_logs`` table used by
``DatabaseAuditStore``. Alembic is an optional dependency:

    pip install 'fastaudit[migrations]'

Usage:
    from fastaudit.migrations import upgrade_database

    upgrade_database("postgresql+psycopg://audit@db/app")

Environment Variables:
    FASTAUDIT_DATABASE_URL  # Used when no URL is passed
"""

from pathlib import Path

# Migration directory path
MIGRATIONS_DIR = Path(__file__).parent
VERSIONS_DIR = MIGRATIONS_DIR / "versions"


def get_alembic_config(database_url: str | None = None):
    """Build an Alembic config pointing at the bundled revisions."""
    from alembic.config import Config

    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    if database_url:
        config.set_main_option("sqlalchemy.url", database_url)
    return config


def upgrade_database(database_url: str | None = None, revision: str = "head") -> None:
    """Apply migrations up to ``revision``."""
    from alembic import command

    command.upgrade(get_alembic_config(database_url), revision)


def downgrade_database(database_url: str | None = None, revision: str = "base") -> None:
    """Roll migrations back to ``revision``."""
    from alembic import command

    command.downgrade(get_alembic_config(database_url), revision)
