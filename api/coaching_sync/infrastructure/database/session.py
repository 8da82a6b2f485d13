"""
Engine y sesiones async de SQLAlchemy para el espejo Postgres.

El outbox y el sweep necesitan saber el dialecto activo (SKIP LOCKED,
advisory locks, ON CONFLICT), por eso se expone `dialect_name`.
"""
from typing import AsyncGenerator

from loguru import logger
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from coaching_sync.core.config import settings


Base = declarative_base()


def _engine_options(url: str) -> dict:
    """Pool solo en Postgres; SQLite (tests, scripts locales) usa el pool por defecto."""
    options = {"echo": settings.DEBUG, "future": True}
    if url.startswith("postgresql"):
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
    return options


engine = create_async_engine(
    settings.effective_database_url,
    **_engine_options(settings.effective_database_url),
)

# Compartida por la API, el worker y los scripts
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


def dialect_name(session: AsyncSession) -> str:
    """'postgresql' o 'sqlite' según el bind de la sesión."""
    return session.get_bind().dialect.name


def is_postgres(session: AsyncSession) -> bool:
    return dialect_name(session) == "postgresql"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependencia FastAPI: una sesión por request.

    Los casos de uso hacen sus propios commits (el marcador del inbox va en la
    misma transacción que el upsert); aquí solo se confirma lo que quede
    pendiente o se revierte ante un error.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Crea las tablas que falten. En producción las gestiona Alembic."""
    import coaching_sync.infrastructure.database  # noqa: F401  (registra los modelos)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.debug(f"Tablas registradas: {len(Base.metadata.tables)}")


async def close_db() -> None:
    await engine.dispose()
