"""
Payloads tipados del outbox: una variante por tipo de entidad.

El payload viaja como JSON (camelCase, tal como lo producen los repositorios
de negocio) y se valida contra su variante tanto al encolar como al despachar.
`extra="forbid"` hace que un nombre de campo inesperado sea un error
permanente en vez de ignorarse en silencio.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from coaching_sync.shared.constants.sync_constants import EventType


EVENT_TYPES = tuple(event_type.value for event_type in EventType)


class SyncPayload(BaseModel):
    """Base común de las variantes."""

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    entity_type: ClassVar[str] = ""

    def canonical_fields(self) -> dict[str, Any]:
        """Solo los campos presentes en el payload original (JSON-safe)."""
        return self.model_dump(mode="json", exclude_unset=True)


class ProgramPayload(SyncPayload):
    entity_type: ClassVar[str] = "program"

    user_id: str
    start_date: Optional[dt.date] = None
    duration: Optional[str] = None
    status: Optional[str] = None
    creation_type: Optional[str] = None
    days_of_week: Optional[list[str]] = None
    goals: Optional[list[str]] = None
    methods: Optional[list[str]] = None
    overtuigingen: Optional[list[str]] = None
    notes: Optional[str] = None


class ProgramSchedulePayload(SyncPayload):
    entity_type: ClassVar[str] = "program_schedule"

    program_id: Optional[str] = None
    date: Optional[dt.date] = None
    day_of_week: Optional[str] = None
    session_description: Optional[str] = None
    methods: Optional[list[str]] = None
    goals: Optional[list[str]] = None
    notes: Optional[str] = None


class MethodUsagePayload(SyncPayload):
    entity_type: ClassVar[str] = "method_usage"

    user_id: str
    method_id: str
    used_at: dt.date
    program_id: Optional[str] = None
    program_schedule_id: Optional[str] = None
    remark: Optional[str] = None


class HabitUsagePayload(SyncPayload):
    entity_type: ClassVar[str] = "habit_usage"

    user_id: str
    method_id: str
    date: dt.date


class PersonalGoalPayload(SyncPayload):
    entity_type: ClassVar[str] = "personal_goal"

    user_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    schedule_days: Optional[list[str]] = None


class PersonalGoalUsagePayload(SyncPayload):
    entity_type: ClassVar[str] = "personal_goal_usage"

    user_id: str
    personal_goal_id: str
    date: dt.date


class OvertuigingUsagePayload(SyncPayload):
    entity_type: ClassVar[str] = "overtuiging_usage"

    user_id: str
    overtuiging_id: str
    date: dt.date
    program_id: Optional[str] = None


class PersoonlijkeOvertuigingPayload(SyncPayload):
    entity_type: ClassVar[str] = "persoonlijke_overtuiging"

    user_id: Optional[str] = None
    name: Optional[str] = None
    status: Optional[str] = None
    completed_date: Optional[dt.date] = None
    program_id: Optional[str] = None


class UserPayload(SyncPayload):
    entity_type: ClassVar[str] = "user"

    user_id: str
    current_streak: Optional[int] = None
    longest_streak: Optional[int] = None
    last_active_date: Optional[dt.date] = None
    last_login: Optional[str] = None
    bonus_points: Optional[int] = None
    badges: Optional[Union[str, list[str]]] = None
    level: Optional[int] = None


PAYLOAD_TYPES: dict[str, type[SyncPayload]] = {
    model.entity_type: model
    for model in (
        ProgramPayload,
        ProgramSchedulePayload,
        MethodUsagePayload,
        HabitUsagePayload,
        PersonalGoalPayload,
        PersonalGoalUsagePayload,
        OvertuigingUsagePayload,
        PersoonlijkeOvertuigingPayload,
        UserPayload,
    )
}

ENTITY_TYPES = tuple(PAYLOAD_TYPES)


class PayloadError(ValueError):
    """Payload inválido para su tipo de entidad (error permanente)."""


def parse_payload(entity_type: str, payload: dict[str, Any] | None) -> SyncPayload:
    """
    Valida un payload crudo contra la variante de su entity_type.

    Lanza PayloadError si el tipo no existe o el payload no cumple el esquema.
    """
    model = PAYLOAD_TYPES.get(entity_type)
    if model is None:
        raise PayloadError(f"Tipo de entidad no soportado por el outbox: {entity_type}")
    try:
        return model.model_validate(payload or {})
    except ValidationError as e:
        raise PayloadError(f"Payload inválido para {entity_type}: {e}") from e


def validate_event(event_type: str, entity_type: str, payload: dict[str, Any] | None) -> None:
    """Validación de encolado: tipo de evento, tipo de entidad y payload."""
    if event_type not in EVENT_TYPES:
        raise PayloadError(f"Tipo de evento no soportado: {event_type}")
    if entity_type not in PAYLOAD_TYPES:
        raise PayloadError(f"Tipo de entidad no soportado por el outbox: {entity_type}")
    if event_type == EventType.UPSERT.value:
        parse_payload(entity_type, payload)
    elif payload is not None and not isinstance(payload, dict):
        raise PayloadError("El payload de un delete debe ser un objeto")
