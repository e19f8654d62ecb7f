"""Alembic environment for per-tenant schema migrations.

The target schema is passed via -x argument, either directly or as a
tenant alias:
  alembic -x schema=tenant_oae upgrade head
  alembic -x tenant=oae upgrade head

Each schema gets its own alembic_version table so migrations
are tracked independently per tenant.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool, text

from src.bbb_meetings.config import get_settings
from src.bbb_meetings.core.database import TenantBase
from src.bbb_meetings.meetings import models  # noqa: F401  (registers tables on TenantBase)

# Alembic Config object
config = context.config

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

cmd_kwargs = context.get_x_argument(as_dictionary=True)
if "tenant" in cmd_kwargs:
    target_schema = f"tenant_{cmd_kwargs['tenant']}"
else:
    target_schema = cmd_kwargs.get("schema", "tenant")
target_metadata = TenantBase.metadata


def _sync_url() -> str:
    # Alembic runs synchronously; psycopg2 stands in for asyncpg
    return get_settings().DATABASE_URL.replace("+asyncpg", "")


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=_sync_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        version_table_schema=target_schema,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = create_engine(_sync_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        # The version table lives in the target schema, so it must exist first
        connection.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{target_schema}"'))
        connection.commit()

        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            version_table_schema=target_schema,
            include_schemas=True,
            schema_translate_map={"tenant": target_schema},
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
