"""Alembic environment for the QA Board remote database.

The URL comes from ``QABOARD_REMOTE_URL`` (``.env`` is honoured) and falls
back to ``sqlalchemy.url`` in the Alembic config, which is how tests point
migrations at a throwaway SQLite file.  SQLite cannot ALTER most things in
place, so batch mode is switched on for it.
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

from alembic import context
from qaboard.config import REMOTE_URL_ENV
from qaboard.database.models import Base

load_dotenv()

config = context.config

remote_url = os.getenv(REMOTE_URL_ENV)
if remote_url:
    config.set_main_option("sqlalchemy.url", remote_url)

if not config.get_main_option("sqlalchemy.url"):
    raise RuntimeError(
        f"No database URL for migrations.  Set {REMOTE_URL_ENV} or sqlalchemy.url."
    )

# Logging setup from alembic.ini, when run from the command line
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of touching a database."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=_is_sqlite(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
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
