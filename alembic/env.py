"""
Alembic environment for the subscriber sync schema
"""
from logging.config import fileConfig

from alembic import context

from subscriber_sync.config import config as app_config
from subscriber_sync.db.base import Base
from subscriber_sync.db.engine import create_database_engine
import subscriber_sync.db.models  # noqa: F401  registers tables on Base.metadata

alembic_config = context.config

if alembic_config.config_file_name is not None:
    fileConfig(alembic_config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline():
    """Emit SQL without a live connection"""
    context.configure(
        url=app_config.get_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    connectable = create_database_engine(app_config.get_database_url())
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
