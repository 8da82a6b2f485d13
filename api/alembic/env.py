"""
Entorno de Alembic del motor de sincronización.

La URL sale de Settings; las migraciones corren síncronas con psycopg aunque
la aplicación use asyncpg. La base es compartida con el backend de la app,
así que autogenerate solo compara las tablas que declara este paquete.
"""
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import engine_from_config, pool

API_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(API_DIR))

from coaching_sync.core.config import settings  # noqa: E402
from coaching_sync.infrastructure.database.session import Base  # noqa: E402
import coaching_sync.infrastructure.database  # noqa: E402,F401  (registra los modelos)


config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _sync_database_url() -> str:
    url = settings.effective_database_url
    return url.replace("+asyncpg", "+psycopg").replace("+aiosqlite", "")


def _include_object(obj, name, type_, reflected, compare_to):
    # Tablas de otros servicios en la misma base: nunca proponer DROP
    if type_ == "table" and reflected and compare_to is None:
        return name in target_metadata.tables
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        include_object=_include_object,
        compare_type=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emite el SQL sin conectarse (alembic upgrade --sql)."""
    _configure(
        url=_sync_database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = _sync_database_url()
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        _configure(
            connection=connection,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
