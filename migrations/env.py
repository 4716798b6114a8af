"""Alembic environment for the portal's raw SQL migrations."""

import logging
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from db import BACKEND_NULL, load_database_config

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger('alembic.env')

# Schema is written by hand in versions/; there is no model metadata.
target_metadata = None


def database_url():
    settings = load_database_config()
    if settings['backend'] == BACKEND_NULL:
        raise RuntimeError('Migrations need a PostgreSQL database; DATABASE_BACKEND is null.')
    url = settings['database_url']
    # SQLAlchemy only accepts the postgresql:// scheme.
    if url.startswith('postgres://'):
        url = 'postgresql://' + url[len('postgres://'):]
    return url


def run_migrations_offline() -> None:
    """Emit the SQL instead of running it."""
    context.configure(
        url=database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(database_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    logger.info("Running migrations in offline mode")
    run_migrations_offline()
else:
    logger.info("Running migrations in online mode")
    run_migrations_online()
