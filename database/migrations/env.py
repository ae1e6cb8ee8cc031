"""
Alembic environment for the recipe engine.

Usage:
    alembic upgrade head
"""

from logging.config import fileConfig

from alembic import context

from recipe_engine.config import Settings
from recipe_engine.database import create_db_engine
from recipe_engine.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

database_url = Settings.from_env().database_url


def run_migrations_offline():
    context.configure(url=database_url, target_metadata=Base.metadata, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    connectable = create_db_engine(database_url)
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=Base.metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
