"""
Dependencias del motor de sincronización.

La configuración y el cliente Airtable se construyen una vez en el startup y
se guardan en app.state; los tests sustituyen estas dependencias con
app.dependency_overrides.
"""
from typing import Callable, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from coaching_sync.application.use_cases.replay_use_cases import ReplayUseCases
from coaching_sync.application.use_cases.user_sync_use_cases import UserSyncUseCases
from coaching_sync.core.config import settings
from coaching_sync.infrastructure.database.session import AsyncSessionLocal, get_db
from coaching_sync.infrastructure.external.airtable_sync.airtable_client import (
    AirtableClient,
    build_airtable_client,
)
from coaching_sync.infrastructure.external.airtable_sync.sync_config import (
    SyncConfigError,
    SyncEngineConfig,
)
from coaching_sync.infrastructure.external.airtable_sync.sync_service import AirtableToPostgresSync
from coaching_sync.shared.exceptions.auth import UnauthorizedException
from coaching_sync.shared.exceptions.domain import SyncNotConfiguredException


def get_sync_config(request: Request) -> SyncEngineConfig:
    """Configuración del motor (app.state.sync_config o Settings)."""
    config = getattr(request.app.state, "sync_config", None)
    if config is None:
        config = SyncEngineConfig.from_settings(settings)
        request.app.state.sync_config = config
    return config


def get_airtable_client(
    request: Request,
    config: SyncEngineConfig = Depends(get_sync_config),
) -> Optional[AirtableClient]:
    """Cliente Airtable compartido, o None si faltan credenciales."""
    client = getattr(request.app.state, "airtable_client", None)
    if client is not None:
        return client
    try:
        client = build_airtable_client(config)
    except SyncConfigError:
        return None
    request.app.state.airtable_client = client
    return client


def get_session_factory() -> Callable[[], AsyncSession]:
    return AsyncSessionLocal


def get_user_sync_use_cases(
    db: AsyncSession = Depends(get_db),
    airtable: Optional[AirtableClient] = Depends(get_airtable_client),
    config: SyncEngineConfig = Depends(get_sync_config),
) -> UserSyncUseCases:
    return UserSyncUseCases(db, airtable, config)


def get_replay_use_cases(db: AsyncSession = Depends(get_db)) -> ReplayUseCases:
    return ReplayUseCases(db)


def get_full_sync_service(
    airtable: Optional[AirtableClient] = Depends(get_airtable_client),
    session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),
    config: SyncEngineConfig = Depends(get_sync_config),
) -> AirtableToPostgresSync:
    if airtable is None:
        raise SyncNotConfiguredException("AIRTABLE_TOKEN/AIRTABLE_BASE_ID")
    return AirtableToPostgresSync(airtable, session_factory, config)


def require_sync_secret(
    x_sync_secret: Optional[str] = Header(None, alias="X-Sync-Secret"),
    config: SyncEngineConfig = Depends(get_sync_config),
) -> None:
    """Protege endpoints de operación con el secreto compartido."""
    expected = config.inbound_sync_secret
    if not expected or x_sync_secret != expected:
        raise UnauthorizedException()
