"""
Writers del outbox: aplican un evento Postgres en Airtable.

Flujo por evento:
1. Validar el payload contra su variante tipada (error permanente si falla).
2. Consultar el mapa de IDs: update si el registro ya existe, create si no.
3. Resolver referencias a otras entidades (program, program_schedule,
   personal_goal) vía IdentifierMapper. Un padre aún no sincronizado es un
   error reintentable.
4. Traducir campos canónicos a field IDs/nombres de Airtable y llamar a la API
   con typecast.
5. En un create, persistir el record id devuelto en el mapa.

Nunca se lanza hacia el dispatcher: todo termina en Ok / RetryableErr / PermanentErr.
Las llamadas HTTP son bloqueantes (requests) y se ejecutan en un hilo aparte.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from loguru import logger

from coaching_sync.domain.entities.sync_event import IdMapping, OutboxEvent
from coaching_sync.infrastructure.external.airtable_sync.airtable_client import (
    AirtableApiError,
    AirtableClient,
    AirtableNotFoundError,
    AirtableRequestError,
    AirtableRetryableError,
)
from coaching_sync.infrastructure.external.airtable_sync.field_mappings import (
    REFERENCE_FIELDS,
    EntityFieldTable,
    table_for,
)
from coaching_sync.infrastructure.external.airtable_sync.payloads import (
    PayloadError,
    SyncPayload,
    UserPayload,
    parse_payload,
)
from coaching_sync.infrastructure.external.airtable_sync.results import (
    Ok,
    PermanentErr,
    RetryableErr,
    WriteResult,
)
from coaching_sync.infrastructure.external.airtable_sync.sync_config import SyncEngineConfig
from coaching_sync.infrastructure.external.airtable_sync.types import is_airtable_record_id
from coaching_sync.infrastructure.repositories.id_map_repository import IdentifierMapper
from coaching_sync.shared.constants.sync_constants import EventType


class MissingReferenceError(Exception):
    """Una referencia a otra entidad aún no tiene record id en Airtable."""


# Valores por defecto que Airtable necesita al CREAR el registro
_CREATE_DEFAULTS: dict[str, dict[str, Any]] = {
    "program": {"status": "Actief", "creation_type": "Manueel"},
    "personal_goal": {"name": "Persoonlijk doel", "status": "Actief"},
    "persoonlijke_overtuiging": {"name": "", "status": "Actief"},
}

# Listas del programa que solo se envían si traen elementos
_PROGRAM_NON_EMPTY_LISTS = ("days_of_week", "goals", "methods", "overtuigingen")


def _prepare_program(fields: dict[str, Any]) -> dict[str, Any]:
    for key in _PROGRAM_NON_EMPTY_LISTS:
        if key in fields and not fields[key]:
            fields.pop(key)
    if "notes" in fields and not fields["notes"]:
        fields.pop("notes")
    return fields


def _prepare_method_usage(fields: dict[str, Any]) -> dict[str, Any]:
    # Se enlaza la sesión planificada o, en su defecto, el programa
    if fields.get("program_schedule_id"):
        fields.pop("program_id", None)
    if "remark" in fields and not fields["remark"]:
        fields.pop("remark")
    return fields


def _prepare_personal_goal(fields: dict[str, Any]) -> dict[str, Any]:
    if "schedule_days" in fields:
        days = fields["schedule_days"] or []
        fields["schedule_days"] = ", ".join(days)
    return fields


_PREPARERS: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
    "program": _prepare_program,
    "method_usage": _prepare_method_usage,
    "personal_goal": _prepare_personal_goal,
}


def to_airtable_fields(layout: EntityFieldTable, canonical: dict[str, Any]) -> dict[str, Any]:
    """
    Traduce campos canónicos al layout de Airtable.

    Los campos ausentes no se envían; los links de un solo id se envían como
    lista [id]; un link a None se omite.
    """
    fields: dict[str, Any] = {}
    for key, value in canonical.items():
        airtable_field = layout.fields.get(key)
        if airtable_field is None:
            continue
        if key in layout.links:
            if not value:
                continue
            value = [str(value)]
        fields[airtable_field] = value
    return fields


class AirtableWriters:
    """
    Despacha eventos del outbox al writer de su tipo de entidad.

    Uso:
        writers = AirtableWriters(client, IdentifierMapper(AsyncSessionLocal), config)
        result = await writers.write(event)
    """

    def __init__(
        self,
        client: AirtableClient,
        mapper: IdentifierMapper,
        config: SyncEngineConfig,
    ):
        self.client = client
        self.mapper = mapper
        self.config = config

    async def write(self, event: OutboxEvent) -> WriteResult:
        """Aplica el evento y retorna el resultado explícito."""
        try:
            if event.event_type == EventType.DELETE.value:
                return await self._delete(event)
            if event.event_type != EventType.UPSERT.value:
                return PermanentErr(f"Tipo de evento no soportado: {event.event_type}")

            payload = parse_payload(event.entity_type, event.payload)
            if isinstance(payload, UserPayload):
                return await self._write_user(payload)
            return await self._upsert(event, payload)

        except PayloadError as e:
            return PermanentErr(str(e))
        except MissingReferenceError as e:
            return RetryableErr(str(e))
        except AirtableRetryableError as e:
            return RetryableErr(f"Airtable no disponible: {e}")
        except AirtableNotFoundError as e:
            return PermanentErr(f"Registro inexistente en Airtable: {e}")
        except AirtableRequestError as e:
            return PermanentErr(f"Airtable rechazó la escritura: {e}")
        except AirtableApiError as e:
            return RetryableErr(str(e))

    # ------------------------------------------------------------------
    # Upsert
    # ------------------------------------------------------------------

    async def _upsert(self, event: OutboxEvent, payload: SyncPayload) -> WriteResult:
        entity_type = event.entity_type
        layout = table_for(entity_type)
        table = getattr(self.config.tables, layout.table_key)

        mapping = await self.mapper.get_mapping(entity_type, event.entity_id)
        if self._is_stale(event, mapping):
            logger.info(
                f"Evento {event.id} obsoleto para {entity_type}:{event.entity_id} "
                f"(seq {event.entity_seq} < {mapping.last_applied_seq}), se omite"
            )
            return Ok(
                external_id=mapping.airtable_record_id,
                skipped=True,
                detail="evento obsoleto",
            )

        canonical = payload.canonical_fields()
        canonical = await self._resolve_references(canonical)

        existing_id = mapping.airtable_record_id if mapping else None
        if existing_id is None:
            if entity_type == "program_schedule" and not canonical.get("program_id"):
                raise MissingReferenceError(
                    f"La planificación {event.entity_id} no tiene programa sincronizado"
                )
            for key, default in _CREATE_DEFAULTS.get(entity_type, {}).items():
                if not canonical.get(key):
                    canonical[key] = default

        preparer = _PREPARERS.get(entity_type)
        if preparer:
            canonical = preparer(canonical)

        fields = to_airtable_fields(layout, canonical)

        if existing_id:
            await asyncio.to_thread(
                self.client.update,
                table,
                existing_id,
                fields,
                by_field_id=layout.by_field_id,
            )
            await self.mapper.upsert_mapping(
                entity_type, event.entity_id, existing_id, applied_seq=event.entity_seq
            )
            logger.debug(f"Airtable actualizado {entity_type}:{event.entity_id} -> {existing_id}")
            return Ok(external_id=existing_id)

        record = await asyncio.to_thread(
            self.client.create,
            table,
            fields,
            by_field_id=layout.by_field_id,
        )
        await self.mapper.upsert_mapping(
            entity_type, event.entity_id, record.record_id, applied_seq=event.entity_seq
        )
        logger.info(f"Airtable creado {entity_type}:{event.entity_id} -> {record.record_id}")
        return Ok(external_id=record.record_id, created=True)

    @staticmethod
    def _is_stale(event: OutboxEvent, mapping: Optional[IdMapping]) -> bool:
        if mapping is None or mapping.last_applied_seq is None:
            return False
        return event.entity_seq < mapping.last_applied_seq

    async def _resolve_references(self, canonical: dict[str, Any]) -> dict[str, Any]:
        """Sustituye IDs Postgres de entidades del outbox por record ids de Airtable."""
        resolved = dict(canonical)
        for key, target_type in REFERENCE_FIELDS.items():
            value = resolved.get(key)
            if not value:
                continue
            resolved[key] = await self._resolve_reference(target_type, str(value))
        return resolved

    async def _resolve_reference(self, entity_type: str, value: str) -> str:
        if is_airtable_record_id(value):
            return value
        external_id = await self.mapper.find_external_id(entity_type, value)
        if external_id is None:
            raise MissingReferenceError(f"Falta el mapeo de {entity_type} {value}")
        return external_id

    # ------------------------------------------------------------------
    # User
    # ------------------------------------------------------------------

    async def _write_user(self, payload: UserPayload) -> WriteResult:
        """Los usuarios comparten ID entre stores: solo se actualizan."""
        if not is_airtable_record_id(payload.user_id):
            return RetryableErr(
                f"El sync de usuarios espera un record id de Airtable, se recibió {payload.user_id}"
            )

        canonical = payload.canonical_fields()
        canonical.pop("user_id", None)
        layout = table_for("user")
        fields = to_airtable_fields(layout, canonical)
        if not fields:
            return Ok(external_id=payload.user_id, detail="sin campos para actualizar")

        await asyncio.to_thread(
            self.client.update,
            self.config.tables.users,
            payload.user_id,
            fields,
            by_field_id=layout.by_field_id,
        )
        return Ok(external_id=payload.user_id)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def _delete(self, event: OutboxEvent) -> WriteResult:
        try:
            layout = table_for(event.entity_type)
        except KeyError as e:
            return PermanentErr(str(e))
        if event.entity_type == "user":
            return PermanentErr("Los usuarios no se eliminan desde el outbox")

        external_id = await self.mapper.find_external_id(event.entity_type, event.entity_id)
        if external_id is None:
            return Ok(skipped=True, detail="sin mapeo, nada que borrar")

        table = getattr(self.config.tables, layout.table_key)
        try:
            await asyncio.to_thread(self.client.destroy, table, external_id)
        except AirtableNotFoundError:
            logger.debug(f"{event.entity_type}:{event.entity_id} ya no existe en Airtable")
            return Ok(external_id=external_id, detail="ya eliminado")

        logger.info(f"Airtable eliminado {event.entity_type}:{event.entity_id} ({external_id})")
        return Ok(external_id=external_id)
