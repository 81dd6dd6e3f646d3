"""Migration environment for the generation job ledger.

The target database comes from the ``STUDIO_POSTGRES_*`` settings (or
``STUDIO_DATABASE_URL_OVERRIDE``) unless ``alembic -x db_url=...`` is given.
SQLite targets run in batch mode so column changes can be replayed locally.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

import studio.models  # noqa: F401
from studio.core.config import get_settings
from studio.core.database import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Only the job lifecycle tables are managed here.
MANAGED_TABLES = frozenset(target_metadata.tables)


def resolve_url() -> str:
    override = context.get_x_argument(as_dictionary=True).get("db_url")
    if override:
        return override.replace("+asyncpg", "").replace("+aiosqlite", "")
    return get_settings().database_url_sync


def include_object(obj, name, type_, reflected, compare_to) -> bool:
    if type_ == "table":
        return name in MANAGED_TABLES
    return True


def configure_options(url: str) -> dict:
    return {
        "target_metadata": target_metadata,
        "include_object": include_object,
        "compare_type": True,
        "compare_server_default": True,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    url = resolve_url()
    context.configure(url=url, literal_binds=True, dialect_opts={"paramstyle": "named"}, **configure_options(url))
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = resolve_url()
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = url
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, **configure_options(url))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
