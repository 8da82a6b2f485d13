"""
Endpoints de sincronización Airtable <-> PostgreSQL.

- Entrantes desde Airtable: webhook firmado de usuarios y endpoint batch.
- Operación: sweep completo, estado del outbox y dead letters.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from coaching_sync.api.v1.dependencies.sync_deps import (
    get_full_sync_service,
    get_replay_use_cases,
    get_user_sync_use_cases,
    require_sync_secret,
)
from coaching_sync.application.dto.sync_dto import (
    DeadLetterDTO,
    FullSyncResponseDTO,
    InboundSyncRequestDTO,
    InboundSyncResponseDTO,
    ReplayResponseDTO,
    SyncStatusDTO,
    WebhookResponseDTO,
)
from coaching_sync.application.use_cases.replay_use_cases import ReplayUseCases
from coaching_sync.application.use_cases.user_sync_use_cases import UserSyncUseCases
from coaching_sync.infrastructure.database.session import get_db
from coaching_sync.infrastructure.external.airtable_sync.sync_service import AirtableToPostgresSync
from coaching_sync.infrastructure.repositories.outbox_repository import OutboxRepository
from coaching_sync.shared.exceptions.domain import EntityNotFoundException


router = APIRouter(prefix="/sync", tags=["Sync"])


@router.post(
    "/users/webhook",
    response_model=WebhookResponseDTO,
    status_code=status.HTTP_200_OK,
    summary="Webhook firmado de usuarios de Airtable"
)
async def user_webhook(
    request: Request,
    x_signature: Optional[str] = Header(None, alias="X-Signature"),
    use_cases: UserSyncUseCases = Depends(get_user_sync_use_cases),
) -> WebhookResponseDTO:
    """
    Recibe user.created / user.updated / user.deleted.

    La firma HMAC-SHA256 se verifica sobre el cuerpo crudo, antes de parsear.
    Un eventId repetido responde 200 con deduplicated=true.
    """
    raw_body = await request.body()
    return await use_cases.handle_user_webhook(raw_body, x_signature)


@router.post(
    "/inbound",
    response_model=InboundSyncResponseDTO,
    status_code=status.HTTP_200_OK,
    summary="Importar usuarios enviados por Airtable"
)
async def inbound_sync(
    body: InboundSyncRequestDTO,
    x_sync_secret: Optional[str] = Header(None, alias="X-Sync-Secret"),
    use_cases: UserSyncUseCases = Depends(get_user_sync_use_cases),
) -> InboundSyncResponseDTO:
    return await use_cases.handle_inbound_batch(body, x_sync_secret)


@router.post(
    "/airtable",
    response_model=FullSyncResponseDTO,
    status_code=status.HTTP_200_OK,
    summary="Sweep completo Airtable -> PostgreSQL",
    dependencies=[Depends(require_sync_secret)],
)
async def run_full_sync(
    service: AirtableToPostgresSync = Depends(get_full_sync_service),
) -> FullSyncResponseDTO:
    """
    Recorre todas las tablas de Airtable y las refleja en PostgreSQL.
    Re-ejecutarlo sin cambios en Airtable no modifica ninguna fila.
    """
    logger.info("Iniciando sweep completo Airtable -> PostgreSQL desde API")
    counts = await service.run()
    return FullSyncResponseDTO(counts=counts.to_dict())


@router.get(
    "/status",
    response_model=SyncStatusDTO,
    summary="Estado del outbox",
    dependencies=[Depends(require_sync_secret)],
)
async def sync_status(db: AsyncSession = Depends(get_db)) -> SyncStatusDTO:
    stats = await OutboxRepository(db).stats()
    return SyncStatusDTO(
        pending=stats["pending"] + stats["failed_retryable"],
        in_flight=stats["in_flight"],
        failed_retryable=stats["failed_retryable"],
        done=stats["done"],
        dead_lettered=stats["dead_lettered"],
        dead_letter_open=stats["dead_letter_open"],
        oldest_pending_age_seconds=stats["oldest_pending_age_seconds"],
    )


@router.get(
    "/dead-letter",
    response_model=List[DeadLetterDTO],
    summary="Listar dead letters",
    dependencies=[Depends(require_sync_secret)],
)
async def list_dead_letters(
    limit: int = Query(50, ge=1, le=500),
    include_replayed: bool = Query(True),
    use_cases: ReplayUseCases = Depends(get_replay_use_cases),
) -> List[DeadLetterDTO]:
    items = await use_cases.list_dead_letters(limit=limit, include_replayed=include_replayed)
    return [DeadLetterDTO.model_validate(item) for item in items]


@router.post(
    "/dead-letter/{dead_letter_id}/replay",
    response_model=ReplayResponseDTO,
    summary="Re-encolar un dead letter",
    dependencies=[Depends(require_sync_secret)],
)
async def replay_dead_letter(
    dead_letter_id: int,
    use_cases: ReplayUseCases = Depends(get_replay_use_cases),
) -> ReplayResponseDTO:
    outbox_id = await use_cases.replay(dead_letter_id)
    if outbox_id is None:
        raise EntityNotFoundException("DeadLetter", dead_letter_id)
    return ReplayResponseDTO(replayed=True, id=dead_letter_id, outbox_id=outbox_id)
