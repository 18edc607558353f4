# app/db/migrations/env.py
from __future__ import annotations

from logging.config import fileConfig
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import Connection
from alembic import context

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# імпорт моделей реєструє всі таблиці в Base.metadata
from app.db import models  # noqa: E402,F401
from app.db.base import Base  # noqa: E402
target_metadata = Base.metadata

from app.core.config import settings  # noqa: E402

# async-драйвер застосунку -> sync-драйвер для alembic
_SYNC_DRIVERS = {
    "postgresql+asyncpg://": "postgresql+psycopg2://",
    "sqlite+aiosqlite://": "sqlite://",
}


def sync_url() -> str:
    # `alembic -x db_url=...` має пріоритет над DATABASE_URL
    url = context.get_x_argument(as_dictionary=True).get("db_url") or settings.database_url
    for async_prefix, sync_prefix in _SYNC_DRIVERS.items():
        if url.startswith(async_prefix):
            return sync_prefix + url[len(async_prefix):]
    return url


def run_migrations_offline() -> None:
    """Offline: лише SQL-скрипт, без підключення."""
    context.configure(
        url=sync_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        # sqlite не вміє ALTER COLUMN
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(sync_url(), poolclass=pool.NullPool)
    with connectable.connect() as connection:
        do_run_migrations(connection)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
