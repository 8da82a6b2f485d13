"""
DTOs de los endpoints de sincronización.
Los cuerpos entrantes usan camelCase (contrato de Airtable Automations).
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class WebhookUserDTO(BaseModel):
    """Usuario incluido en el webhook de Airtable."""

    id: str = Field(..., min_length=1, description="Record id de Airtable")
    email: str = Field(..., pattern=EMAIL_PATTERN, description="E-mail del usuario")
    name: str = Field(..., description="Nombre visible")
    role: Optional[str] = None
    language_code: Optional[str] = Field(None, alias="languageCode")
    password_hash: Optional[str] = Field(None, alias="passwordHash")

    class Config:
        populate_by_name = True


class UserWebhookEventDTO(BaseModel):
    """Cuerpo del webhook firmado de usuarios."""

    event_id: str = Field(..., alias="eventId", min_length=1)
    event_type: Literal["user.created", "user.updated", "user.deleted"] = Field(..., alias="eventType")
    occurred_at: str = Field(..., alias="occurredAt")
    user: WebhookUserDTO

    class Config:
        populate_by_name = True


class WebhookResponseDTO(BaseModel):
    event_id: str = Field(..., serialization_alias="eventId")
    deduplicated: bool = False
    status: str = "processed"


class InboundUserRecordDTO(BaseModel):
    """
    Usuario en el endpoint batch. Acepta la forma plana o la forma de
    registro Airtable ({id, fields: {...}}).
    """

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    language_code: Optional[str] = Field(None, alias="languageCode")
    password_hash: Optional[str] = Field(None, alias="passwordHash")
    last_login: Optional[str] = Field(None, alias="lastLogin")

    class Config:
        populate_by_name = True

    @model_validator(mode="before")
    @classmethod
    def _flatten_fields(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("fields"), dict):
            return {"id": data.get("id"), **data["fields"]}
        return data


class InboundSyncRequestDTO(BaseModel):
    """Cuerpo de POST /sync/inbound."""

    table: str
    event_id: Optional[str] = Field(None, alias="eventId")
    record_id: Optional[str] = Field(None, alias="recordId")
    records: Optional[List[InboundUserRecordDTO]] = None

    class Config:
        populate_by_name = True


class InboundSyncResponseDTO(BaseModel):
    event_id: str = Field(..., serialization_alias="eventId")
    deduplicated: bool = False
    synced: int = 0


class FullSyncResponseDTO(BaseModel):
    counts: Dict[str, Any] = Field(..., description="Registros procesados por tabla")


class DeadLetterDTO(BaseModel):
    id: int
    outbox_id: int
    event_type: str
    entity_type: str
    entity_id: str
    payload: Dict[str, Any]
    attempt_count: int
    last_error: Optional[str] = None
    dead_lettered_at: datetime
    replayed_at: Optional[datetime] = None
    replay_outbox_id: Optional[int] = None

    class Config:
        from_attributes = True


class ReplayResponseDTO(BaseModel):
    replayed: bool
    id: int
    outbox_id: Optional[int] = None


class SyncStatusDTO(BaseModel):
    """Salud del outbox."""

    pending: int = Field(..., description="Eventos pendientes o en espera de reintento")
    in_flight: int
    failed_retryable: int
    done: int
    dead_lettered: int
    dead_letter_open: int = Field(..., description="Dead letters sin replay")
    oldest_pending_age_seconds: Optional[float] = None
