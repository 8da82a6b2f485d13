"""
Entidades del dominio de sincronización.

Son snapshots inmutables: se construyen a partir de las filas ORM dentro de
una transacción corta y pueden usarse después de cerrarla (por ejemplo, en
un hilo que llama a Airtable) sin riesgo de lazy-loads.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class OutboxEvent:
    """Evento reclamado del outbox, listo para el writer."""

    id: int
    event_type: str
    entity_type: str
    entity_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    priority: int = 100
    attempt_count: int = 0
    entity_seq: int = 1
    claim_token: Optional[str] = None

    @classmethod
    def from_model(cls, model) -> "OutboxEvent":
        return cls(
            id=model.id,
            event_type=model.event_type,
            entity_type=model.entity_type,
            entity_id=model.entity_id,
            payload=dict(model.payload or {}),
            priority=model.priority,
            attempt_count=model.attempt_count,
            entity_seq=model.entity_seq,
            claim_token=model.claim_token,
        )


@dataclass(frozen=True)
class IdMapping:
    """Fila del mapa de identificadores."""

    entity_type: str
    postgres_id: str
    airtable_record_id: str
    last_synced_at: Optional[datetime] = None
    last_applied_seq: Optional[int] = None


@dataclass(frozen=True)
class DeadLetter:
    """Evento muerto, tal como se lista en la API de administración."""

    id: int
    outbox_id: int
    event_type: str
    entity_type: str
    entity_id: str
    payload: dict[str, Any]
    attempt_count: int
    entity_seq: int
    last_error: Optional[str]
    dead_lettered_at: datetime
    replayed_at: Optional[datetime] = None
    replay_outbox_id: Optional[int] = None

    @classmethod
    def from_model(cls, model) -> "DeadLetter":
        return cls(
            id=model.id,
            outbox_id=model.outbox_id,
            event_type=model.event_type,
            entity_type=model.entity_type,
            entity_id=model.entity_id,
            payload=dict(model.payload or {}),
            attempt_count=model.attempt_count,
            entity_seq=model.entity_seq,
            last_error=model.last_error,
            dead_lettered_at=model.dead_lettered_at,
            replayed_at=model.replayed_at,
            replay_outbox_id=model.replay_outbox_id,
        )
