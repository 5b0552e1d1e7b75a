import asyncio
from logging.config import fileConfig

from sqlalchemy import inspect, pool, text
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

from control_panel.core.settings import settings
from control_panel.db.base import Base
from control_panel.db import model_registry  # noqa: F401


config = context.config
config.set_main_option("sqlalchemy.url", settings.database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

ALEMBIC_VERSION_TABLE = "alembic_version"
# Revision ids are descriptive and longer than the default VARCHAR(32).
ALEMBIC_VERSION_COL_LEN = 128


def _ensure_alembic_version_table(connection: Connection) -> None:
    inspector = inspect(connection)
    if ALEMBIC_VERSION_TABLE not in set(inspector.get_table_names()):
        connection.execute(
            text(
                f"""
                CREATE TABLE {ALEMBIC_VERSION_TABLE} (
                    version_num VARCHAR({ALEMBIC_VERSION_COL_LEN}) NOT NULL,
                    CONSTRAINT alembic_version_pkc PRIMARY KEY (version_num)
                )
                """
            )
        )
        return

    for column in inspector.get_columns(ALEMBIC_VERSION_TABLE):
        if column.get("name") != "version_num":
            continue
        current_len = getattr(column.get("type"), "length", None)
        if current_len is not None and current_len < ALEMBIC_VERSION_COL_LEN:
            connection.execute(
                text(
                    f"ALTER TABLE {ALEMBIC_VERSION_TABLE} "
                    f"MODIFY version_num VARCHAR({ALEMBIC_VERSION_COL_LEN}) NOT NULL"
                )
            )
        break


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    _ensure_alembic_version_table(connection)
    context.configure(connection=connection, target_metadata=target_metadata)

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
