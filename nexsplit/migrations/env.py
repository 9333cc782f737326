"""
nexsplit/migrations/env.py — Alembic environment.

The database URL is taken from the same config class the app factory would
load: FLASK_ENV picks it, and TEST_RUN=1 forces TestingConfig so migrations
can be applied to the TEST_DATABASE_URL database.
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

# nexsplit.config loads the .env files on import.
from nexsplit.config import config_by_name
from nexsplit.app.extensions import db
from nexsplit.app.models import debt, expense, nex, split, user  # noqa: F401

target_metadata = db.metadata


def _database_url() -> str:
    env_name = "testing" if os.getenv("TEST_RUN") else os.getenv("FLASK_ENV", "development")
    settings = config_by_name.get(env_name, config_by_name["development"])
    url = settings.SQLALCHEMY_DATABASE_URI
    if not url:
        raise RuntimeError(f"No database URL configured for FLASK_ENV={env_name!r}.")
    return url


alembic_cfg = context.config
alembic_cfg.set_main_option("sqlalchemy.url", _database_url())

if alembic_cfg.config_file_name is not None:
    fileConfig(alembic_cfg.config_file_name)


def run_migrations_offline() -> None:
    """Emits SQL to stdout instead of connecting (alembic upgrade --sql)."""
    context.configure(
        url=alembic_cfg.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = engine_from_config(
        alembic_cfg.get_section(alembic_cfg.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
