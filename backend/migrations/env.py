"""Alembic environment for the scheduler tables (sync psycopg2 engine)."""
import sys
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import create_engine, pool
from sqlalchemy.engine import Connection

from alembic import context

# Project root on sys.path so backend.app imports resolve when run from backend/
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from backend.app.core.base import Base  # noqa: E402
from backend.app.core.settings import Settings  # noqa: E402
from backend.app.models import assignment, courier, fulfillment, order, sector, slot, vendor  # noqa: E402,F401

config = context.config

# Production checks (ADMIN_SECRET, CORS) do not apply to migrations, so Settings is built directly
SYNC_DB_URL = Settings().sync_db_url
config.set_main_option("sqlalchemy.url", SYNC_DB_URL.replace("%", "%%"))

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit SQL to stdout without connecting."""
    context.configure(
        url=SYNC_DB_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(SYNC_DB_URL, poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            do_run_migrations(connection)
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
