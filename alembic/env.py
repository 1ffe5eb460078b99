"""Alembic environment configuration.

URL resolution: DATABASE_URL_MIGRATIONS > DATABASE_URL > alembic.ini.
Online migrations use build_engine(), so they get the same sslmode policy
for Supabase hosts and NullPool as the app.
"""

import os
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context

# Add apps/api to path so saaskit_api imports resolve.
sys.path.insert(0, str(Path(__file__).parent.parent / "apps" / "api"))

from saaskit_api.db.engine import build_engine  # noqa: E402
from saaskit_api.db.url_policy import ensure_sslmode  # noqa: E402
from saaskit_api.db.models import Base  # noqa: E402

# Alembic Config object: access to values in the .ini file.
config = context.config

# Set up logging from the alembic.ini config file.
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Target metadata for autogenerate support.
target_metadata = Base.metadata

# Priority: DATABASE_URL_MIGRATIONS (migration-specific) > DATABASE_URL (runtime) > alembic.ini
database_url = (
    os.getenv("DATABASE_URL_MIGRATIONS")
    or os.getenv("DATABASE_URL")
    or config.get_main_option("sqlalchemy.url")
)

if not database_url:
    raise ValueError(
        "Database URL not configured. "
        "Set DATABASE_URL_MIGRATIONS or DATABASE_URL environment variable, "
        "or configure sqlalchemy.url in alembic.ini."
    )

# Offline mode reads the URL back from the config; it never connects.
config.set_main_option("sqlalchemy.url", database_url)


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (SQL generation, no DB connection).

    Configures the context with a URL and emits SQL to stdout/file.
    Supabase URLs get sslmode injected so the emitted URL matches runtime.
    """
    url = ensure_sslmode(config.get_main_option("sqlalchemy.url"))
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode (direct DB connection).

    Uses build_engine() so sslmode and pool policy match the app.

    Raises:
        RuntimeError: unsafe sslmode for a Supabase host in production
        ValueError: DATABASE_URL not resolvable.
    """
    connectable = build_engine(database_url)

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
