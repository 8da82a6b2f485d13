"""
Fast-lane de usuarios: Airtable -> Postgres con prioridad.

La identidad del usuario condiciona el login, así que no puede esperar al
sweep completo. Tres vías:
- Webhook firmado (HMAC) que envía Airtable al crear/editar/borrar un usuario.
- Endpoint batch con secreto compartido (lista de registros o un recordId).
- Read-through: si un usuario no está en Postgres se busca en Airtable al vuelo.

Todas las entradas se deduplican en sync_inbox_events y el marcador se
persiste en la misma transacción que el upsert.
"""
import asyncio
import json
from typing import List, Optional

from loguru import logger
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from coaching_sync.application.dto.sync_dto import (
    InboundSyncRequestDTO,
    InboundSyncResponseDTO,
    UserWebhookEventDTO,
    WebhookResponseDTO,
)
from coaching_sync.infrastructure.database.models import UserModel
from coaching_sync.infrastructure.external.airtable_sync.airtable_client import (
    AirtableApiError,
    AirtableClient,
    AirtableNotFoundError,
)
from coaching_sync.infrastructure.external.airtable_sync.field_mappings import USER_FORMULA_FIELDS
from coaching_sync.infrastructure.external.airtable_sync.sync_config import SyncEngineConfig
from coaching_sync.infrastructure.external.airtable_sync.sync_service import map_user_record
from coaching_sync.infrastructure.external.airtable_sync.types import escape_formula_value, utc_now
from coaching_sync.infrastructure.repositories.inbox_repository import ensure_inbound_event_not_duplicate
from coaching_sync.infrastructure.repositories.user_repository import UserRepository, UserSyncRecord
from coaching_sync.shared.constants.sync_constants import InboxSource
from coaching_sync.shared.exceptions.auth import (
    InvalidSignatureException,
    MissingSignatureException,
    UnauthorizedException,
)
from coaching_sync.shared.exceptions.domain import (
    FeatureDisabledException,
    SyncNotConfiguredException,
    ValidationException,
)
from coaching_sync.shared.utils.webhook_auth import verify_hmac_signature


class UserSyncUseCases:
    """Sincronización prioritaria de la entidad usuario."""

    def __init__(self, db: AsyncSession, airtable: Optional[AirtableClient], config: SyncEngineConfig):
        self.db = db
        self.airtable = airtable
        self.config = config
        self.users = UserRepository(db)

    # ------------------------------------------------------------------
    # Lectura desde Airtable
    # ------------------------------------------------------------------

    def _require_airtable(self) -> AirtableClient:
        if self.airtable is None:
            raise SyncNotConfiguredException("AIRTABLE_TOKEN/AIRTABLE_BASE_ID")
        return self.airtable

    async def fetch_user_from_airtable_by_email(self, email: str) -> Optional[UserSyncRecord]:
        """Primer usuario de Airtable con ese e-mail, o None."""
        airtable = self._require_airtable()
        formula = f'{{{USER_FORMULA_FIELDS["email"]}}} = "{escape_formula_value(email)}"'
        record = await asyncio.to_thread(
            airtable.select_first,
            self.config.tables.users,
            filter_formula=formula,
        )
        if record is None:
            return None
        return map_user_record(record, status_field=self.config.user_status_field)

    async def fetch_user_from_airtable_by_id(self, user_id: str) -> Optional[UserSyncRecord]:
        """Usuario de Airtable por record id. Cualquier error de Airtable -> None."""
        airtable = self._require_airtable()
        try:
            record = await asyncio.to_thread(airtable.find, self.config.tables.users, user_id)
        except AirtableNotFoundError:
            return None
        except AirtableApiError as e:
            logger.warning(f"No se pudo leer el usuario {user_id} de Airtable: {e}")
            return None
        return map_user_record(record, status_field=self.config.user_status_field)

    # ------------------------------------------------------------------
    # Escritura en Postgres
    # ------------------------------------------------------------------

    async def sync_user_records(self, records: List[UserSyncRecord]) -> int:
        """Upsert de usuarios válidos (id y e-mail). No hace commit."""
        synced = 0
        for record in records:
            if not record.id or not record.email:
                continue
            await self.users.upsert_from_airtable(record)
            synced += 1
        return synced

    async def _read_through(self, record: Optional[UserSyncRecord]) -> Optional[UserModel]:
        if record is None:
            return None
        event_id = f"{int(utc_now().timestamp() * 1000)}-{record.id}"
        await ensure_inbound_event_not_duplicate(
            self.db, event_id, InboxSource.AIRTABLE_READTHROUGH.value
        )
        await self.users.upsert_from_airtable(record)
        await self.db.commit()
        logger.info(f"Read-through: usuario {record.id} importado desde Airtable")
        return await self.users.find_by_id(record.id)

    async def read_through_sync_user_by_email(self, email: str) -> Optional[UserModel]:
        return await self._read_through(await self.fetch_user_from_airtable_by_email(email))

    async def read_through_sync_user_by_id(self, user_id: str) -> Optional[UserModel]:
        return await self._read_through(await self.fetch_user_from_airtable_by_id(user_id))

    async def get_user_by_email_with_read_through(self, email: str) -> Optional[UserModel]:
        """Postgres primero; si no está y el fallback está activo, Airtable."""
        existing = await self.users.find_by_email(email)
        if existing is not None:
            return existing
        if not self.config.user_readthrough_enabled:
            return None
        return await self.read_through_sync_user_by_email(email)

    async def get_user_by_id_with_read_through(self, user_id: str) -> Optional[UserModel]:
        existing = await self.users.find_by_id(user_id)
        if existing is not None:
            return existing
        if not self.config.user_readthrough_enabled:
            return None
        return await self.read_through_sync_user_by_id(user_id)

    async def sync_all_users_from_airtable(self) -> int:
        """Poll de respaldo: importa todos los usuarios de Airtable."""
        airtable = self._require_airtable()
        records = await asyncio.to_thread(airtable.list_all, self.config.tables.users)
        mapped = [
            map_user_record(record, status_field=self.config.user_status_field)
            for record in records
        ]
        synced = await self.sync_user_records(mapped)
        await self.db.commit()
        logger.info(f"Poll de usuarios: {synced}/{len(records)} sincronizados")
        return synced

    # ------------------------------------------------------------------
    # Webhook firmado
    # ------------------------------------------------------------------

    async def handle_user_webhook(self, raw_body: bytes, signature: Optional[str]) -> WebhookResponseDTO:
        """
        Procesa el webhook de usuarios de Airtable.

        Orden de validación: flag -> secreto configurado -> firma -> payload ->
        deduplicación. Un evento repetido no vuelve a aplicarse.
        """
        if not self.config.user_webhook_enabled:
            raise FeatureDisabledException("user_webhook_sync")
        secret = self.config.user_sync_secret
        if not secret:
            raise SyncNotConfiguredException("AIRTABLE_USER_SYNC_SECRET")
        if not signature:
            raise MissingSignatureException("X-Signature")
        if not verify_hmac_signature(raw_body, signature, secret):
            raise InvalidSignatureException()

        try:
            event = UserWebhookEventDTO.model_validate(json.loads(raw_body or b"{}"))
        except (ValueError, ValidationError) as e:
            raise ValidationException(f"Payload inválido: {e}") from e

        is_new = await ensure_inbound_event_not_duplicate(
            self.db, event.event_id, InboxSource.AIRTABLE_USER_WEBHOOK.value
        )
        if not is_new:
            logger.info(f"[user-webhook] Evento duplicado {event.event_id}")
            return WebhookResponseDTO(event_id=event.event_id, deduplicated=True, status="deduplicated")

        user = event.user
        if event.event_type == "user.deleted":
            await self.users.mark_deleted(user.id)
            await self.db.commit()
            logger.info(f"[user-webhook] Usuario {user.id} marcado como eliminado")
            return WebhookResponseDTO(event_id=event.event_id)

        await self.users.upsert_from_airtable(
            UserSyncRecord(
                id=user.id,
                name=user.name,
                email=user.email,
                role=user.role or None,
                language_code=user.language_code or None,
                password_hash=user.password_hash or None,
            )
        )
        await self.db.commit()
        logger.info(f"[user-webhook] Usuario {user.id} sincronizado ({event.event_type})")
        return WebhookResponseDTO(event_id=event.event_id)

    # ------------------------------------------------------------------
    # Endpoint batch
    # ------------------------------------------------------------------

    async def handle_inbound_batch(
        self,
        request: InboundSyncRequestDTO,
        provided_secret: Optional[str],
    ) -> InboundSyncResponseDTO:
        """Importa usuarios enviados por una automatización de Airtable."""
        expected = self.config.inbound_sync_secret
        if not expected or provided_secret != expected:
            raise UnauthorizedException()
        if request.table != "users":
            raise ValidationException(
                "Solo la tabla users está soportada en este endpoint", field="table"
            )

        event_id = request.event_id or (
            f"{int(utc_now().timestamp() * 1000)}-{request.record_id or 'batch'}"
        )
        is_new = await ensure_inbound_event_not_duplicate(
            self.db, event_id, InboxSource.AIRTABLE_INBOUND.value
        )
        if not is_new:
            return InboundSyncResponseDTO(event_id=event_id, deduplicated=True)

        records: List[UserSyncRecord] = []
        if request.records is not None:
            for raw in request.records:
                if not raw.id or not raw.email:
                    continue
                records.append(
                    UserSyncRecord(
                        id=raw.id,
                        name=raw.name or "",
                        email=raw.email,
                        role=raw.role or None,
                        language_code=raw.language_code or None,
                        password_hash=raw.password_hash or None,
                        last_login=raw.last_login or None,
                    )
                )
        elif request.record_id:
            loaded = await self.fetch_user_from_airtable_by_id(request.record_id)
            if loaded is not None:
                records.append(loaded)

        if not records:
            await self.db.rollback()
            raise ValidationException("No hay registros de usuario válidos en el payload", field="records")

        synced = await self.sync_user_records(records)
        await self.db.commit()
        logger.info(f"[inbound] {synced} usuarios sincronizados (evento {event_id})")
        return InboundSyncResponseDTO(event_id=event_id, synced=synced)
