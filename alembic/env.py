"""Alembic environment — wired to Synergy models and DATABASE_URL.

Online migrations reuse :func:`synergy.database.engine.create_db_engine`,
so the bot and ``alembic upgrade head`` always agree on the target
database.  Type changes are compared on autogenerate because the event
counters and snapshot columns are tightly typed.
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from dotenv import load_dotenv

from alembic import context

load_dotenv()

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Models must be imported for autogenerate to see every table
from synergy.database.engine import create_db_engine  # noqa: E402
from synergy.database.models import Base  # noqa: E402

target_metadata = Base.metadata

_CONFIGURE_OPTS = {
    "target_metadata": target_metadata,
    "compare_type": True,
}


def run_migrations_offline() -> None:
    """Emit SQL for ``alembic upgrade --sql`` without connecting."""
    url = os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_CONFIGURE_OPTS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations on a live connection from the bot's engine factory."""
    engine = create_db_engine()
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, **_CONFIGURE_OPTS)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
