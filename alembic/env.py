"""Alembic environment configuration for tabular_ingestor."""

from __future__ import annotations

import logging
from logging.config import fileConfig

from sqlalchemy import create_engine, pool

import tabular_ingestor.models  # noqa: F401
from alembic import context  # type: ignore[import-untyped]
from tabular_ingestor.exceptions import ConfigurationError
from tabular_ingestor.models.base import Base
from tabular_ingestor.utils.config import ensure_runtime_configuration, get_settings

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)
logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata


def get_database_url() -> str:
    """Return TABULAR_DATABASE_URL after validating the runtime configuration."""

    settings = ensure_runtime_configuration(get_settings())
    database_url = settings.database_url
    if not database_url:
        raise ConfigurationError("No database URL configured for migrations.")
    logger.info("Running migrations against %s", database_url.split("@")[-1])
    return database_url


def run_migrations_offline() -> None:
    """Emit SQL for the schema without connecting to a database."""

    context.configure(
        url=get_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(get_database_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            # SQLite needs batch mode for ALTER TABLE.
            render_as_batch=connection.dialect.name == "sqlite",
            transaction_per_migration=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
