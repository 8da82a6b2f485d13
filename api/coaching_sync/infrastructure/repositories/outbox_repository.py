"""
Repositorio del outbox de sincronización.

Las operaciones NO hacen commit: el llamador controla la transacción. Así
`enqueue` puede ejecutarse dentro de la misma transacción que la escritura de
negocio, y el evento se persiste si y solo si esa escritura hace commit.
"""
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coaching_sync.domain.entities.sync_event import DeadLetter, OutboxEvent
from coaching_sync.infrastructure.database.models import SyncDeadLetterModel, SyncOutboxModel
from coaching_sync.infrastructure.database.session import is_postgres
from coaching_sync.infrastructure.database.upsert import dialect_insert
from coaching_sync.infrastructure.external.airtable_sync.payloads import PayloadError, validate_event
from coaching_sync.infrastructure.external.airtable_sync.types import ensure_utc, utc_now
from coaching_sync.shared.constants.sync_constants import (
    DEFAULT_PRIORITY,
    USER_PRIORITY,
    OutboxStatus,
)
from coaching_sync.shared.exceptions.domain import ValidationException


CLAIMABLE_STATUSES = (OutboxStatus.PENDING.value, OutboxStatus.FAILED_RETRYABLE.value)

# Intentos de asignar entity_seq cuando otro enqueue concurrente toma el mismo número
SEQ_ALLOCATION_ATTEMPTS = 5


class OutboxRepository:
    """Acceso a sync_outbox y sync_dead_letter."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(
        self,
        event_type: str,
        entity_type: str,
        entity_id: str,
        payload: Optional[Dict[str, Any]] = None,
        priority: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> Optional[int]:
        """
        Inserta un evento pendiente.

        Retorna el id del evento, o None si ya existía uno con la misma
        idempotency_key (no-op). Lanza ValidationException si el payload no
        cumple la variante de su entity_type. Sin prioridad explícita, los
        eventos de usuario van antes que el resto (USER_PRIORITY).
        """
        try:
            validate_event(event_type, entity_type, payload)
        except PayloadError as e:
            raise ValidationException(str(e), field="payload") from e

        entity_id = str(entity_id)
        if priority is None:
            priority = USER_PRIORITY if entity_type == "user" else DEFAULT_PRIORITY
        now = utc_now()
        values = {
            "event_type": event_type,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "payload": payload or {},
            "priority": priority,
            "attempt_count": 0,
            "next_attempt_at": now,
            "status": OutboxStatus.PENDING.value,
            "idempotency_key": idempotency_key,
            "created_at": now,
            "updated_at": now,
        }

        row = await self._insert_with_next_seq(values)
        if row is None:
            logger.debug(f"Evento duplicado ignorado (idempotency_key={idempotency_key})")
            return None
        return row[0]

    async def _insert_with_next_seq(self, values: Dict[str, Any]):
        """
        INSERT con entity_seq = max + 1.

        Dos enqueues concurrentes de la misma entidad pueden leer el mismo
        máximo; el índice único uq_sync_outbox_entity_seq rechaza al segundo,
        que reintenta dentro de un SAVEPOINT sin abortar la transacción de
        negocio. SQLite serializa las escrituras, así que allí no hace falta.
        """
        for attempt in range(1, SEQ_ALLOCATION_ATTEMPTS + 1):
            values["entity_seq"] = await self._next_entity_seq(values["entity_type"], values["entity_id"])
            stmt = dialect_insert(self.session, SyncOutboxModel).values(**values)
            if values["idempotency_key"]:
                stmt = stmt.on_conflict_do_nothing(index_elements=["idempotency_key"])
            stmt = stmt.returning(SyncOutboxModel.id)

            if not is_postgres(self.session):
                return (await self.session.execute(stmt)).first()
            try:
                async with self.session.begin_nested():
                    return (await self.session.execute(stmt)).first()
            except IntegrityError:
                if attempt == SEQ_ALLOCATION_ATTEMPTS:
                    raise
                logger.debug(
                    f"entity_seq {values['entity_seq']} ocupado para "
                    f"{values['entity_type']}:{values['entity_id']}, reintentando"
                )

    async def reinsert(
        self,
        dead: DeadLetter,
        *,
        priority: int,
        idempotency_key: str,
    ) -> int:
        """
        Re-encola un evento muerto como evento nuevo (attempt 0, elegible ya).

        Conserva el entity_seq original: si desde entonces se aplicó un evento
        más nuevo de la misma entidad, el writer lo descartará como obsoleto.
        """
        now = utc_now()
        event = SyncOutboxModel(
            event_type=dead.event_type,
            entity_type=dead.entity_type,
            entity_id=dead.entity_id,
            payload=dead.payload,
            priority=priority,
            attempt_count=0,
            next_attempt_at=now,
            status=OutboxStatus.PENDING.value,
            entity_seq=dead.entity_seq,
            is_replay=True,
            idempotency_key=idempotency_key,
            created_at=now,
            updated_at=now,
        )
        self.session.add(event)
        await self.session.flush()
        return event.id

    async def _next_entity_seq(self, entity_type: str, entity_id: str) -> int:
        result = await self.session.execute(
            select(func.max(SyncOutboxModel.entity_seq)).where(
                SyncOutboxModel.entity_type == entity_type,
                SyncOutboxModel.entity_id == entity_id,
            )
        )
        current = result.scalar()
        return (current or 0) + 1

    async def get(self, event_id: int) -> Optional[SyncOutboxModel]:
        result = await self.session.execute(
            select(SyncOutboxModel).where(SyncOutboxModel.id == event_id)
        )
        return result.scalar_one_or_none()

    async def claim_batch(
        self,
        limit: int,
        lease_seconds: int,
        now: Optional[datetime] = None,
    ) -> List[OutboxEvent]:
        """
        Reclama hasta `limit` eventos elegibles y los marca in_flight.

        Elegibles: pending/failed_retryable con next_attempt_at vencido, o
        in_flight cuyo lease expiró (worker caído). Orden: prioridad, luego id.
        En Postgres usa FOR UPDATE SKIP LOCKED para que dos workers no reclamen
        el mismo evento. Cada claim recibe un claim_token nuevo: mark_done,
        mark_retry y move_to_dead_letter solo aplican si el token sigue vigente.
        """
        now = now or utc_now()
        eligible = or_(
            and_(
                SyncOutboxModel.status.in_(CLAIMABLE_STATUSES),
                SyncOutboxModel.next_attempt_at <= now,
            ),
            and_(
                SyncOutboxModel.status == OutboxStatus.IN_FLIGHT.value,
                SyncOutboxModel.locked_until < now,
            ),
        )
        result = await self.session.execute(
            select(SyncOutboxModel)
            .where(eligible)
            .order_by(SyncOutboxModel.priority.asc(), SyncOutboxModel.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        rows = result.scalars().all()

        locked_until = now + timedelta(seconds=lease_seconds)
        for row in rows:
            row.status = OutboxStatus.IN_FLIGHT.value
            row.locked_until = locked_until
            row.claim_token = uuid.uuid4().hex
            row.updated_at = now
        await self.session.flush()

        return [OutboxEvent.from_model(row) for row in rows]

    @staticmethod
    def _held_claim(event: OutboxEvent):
        """Filtro: el evento sigue in_flight y con el token de este claim."""
        return and_(
            SyncOutboxModel.id == event.id,
            SyncOutboxModel.status == OutboxStatus.IN_FLIGHT.value,
            SyncOutboxModel.claim_token == event.claim_token,
        )

    async def _update_claimed(self, event: OutboxEvent, **values) -> bool:
        """UPDATE condicionado al claim. False si otro worker lo reclamó."""
        result = await self.session.execute(
            update(SyncOutboxModel).where(self._held_claim(event)).values(**values)
        )
        if (result.rowcount or 0) == 0:
            logger.warning(
                f"Evento {event.id} ({event.entity_type}:{event.entity_id}): "
                f"claim perdido, se descarta el resultado de este worker"
            )
            return False
        return True

    async def renew_lease(
        self,
        event: OutboxEvent,
        lease_seconds: int,
        now: Optional[datetime] = None,
    ) -> bool:
        """Extiende locked_until antes de llamar al writer. False si el claim se perdió."""
        now = now or utc_now()
        return await self._update_claimed(
            event,
            locked_until=now + timedelta(seconds=lease_seconds),
            updated_at=now,
        )

    async def mark_done(self, event: OutboxEvent, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return await self._update_claimed(
            event,
            status=OutboxStatus.DONE.value,
            processed_at=now,
            locked_until=None,
            claim_token=None,
            last_error=None,
            updated_at=now,
        )

    async def mark_retry(
        self,
        event: OutboxEvent,
        attempt_count: int,
        next_attempt_at: datetime,
        error: str,
    ) -> bool:
        return await self._update_claimed(
            event,
            status=OutboxStatus.FAILED_RETRYABLE.value,
            attempt_count=attempt_count,
            next_attempt_at=next_attempt_at,
            last_error=error,
            locked_until=None,
            claim_token=None,
            updated_at=utc_now(),
        )

    async def move_to_dead_letter(
        self,
        event: OutboxEvent,
        attempt_count: int,
        error: str,
    ) -> Optional[int]:
        """
        Marca el evento dead_lettered y lo copia a sync_dead_letter.

        Retorna el id del dead letter, o None si el claim se perdió (no se
        copia nada).
        """
        now = utc_now()
        moved = await self._update_claimed(
            event,
            status=OutboxStatus.DEAD_LETTERED.value,
            attempt_count=attempt_count,
            last_error=error,
            locked_until=None,
            claim_token=None,
            processed_at=now,
            updated_at=now,
        )
        if not moved:
            return None

        dead = SyncDeadLetterModel(
            outbox_id=event.id,
            event_type=event.event_type,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            payload=event.payload,
            priority=event.priority,
            attempt_count=attempt_count,
            entity_seq=event.entity_seq,
            last_error=error,
            dead_lettered_at=now,
        )
        self.session.add(dead)
        await self.session.flush()
        return dead.id

    async def stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Conteos por estado, antigüedad del pendiente más viejo y dead letters sin replay."""
        now = now or utc_now()
        result = await self.session.execute(
            select(SyncOutboxModel.status, func.count()).group_by(SyncOutboxModel.status)
        )
        by_status = {status: count for status, count in result.all()}

        result = await self.session.execute(
            select(func.min(SyncOutboxModel.created_at)).where(
                SyncOutboxModel.status.in_(CLAIMABLE_STATUSES)
            )
        )
        oldest = result.scalar()
        oldest_age = (now - ensure_utc(oldest)).total_seconds() if oldest else None

        result = await self.session.execute(
            select(func.count()).select_from(SyncDeadLetterModel).where(
                SyncDeadLetterModel.replayed_at.is_(None)
            )
        )
        dead_open = result.scalar() or 0

        return {
            "pending": by_status.get(OutboxStatus.PENDING.value, 0),
            "failed_retryable": by_status.get(OutboxStatus.FAILED_RETRYABLE.value, 0),
            "in_flight": by_status.get(OutboxStatus.IN_FLIGHT.value, 0),
            "done": by_status.get(OutboxStatus.DONE.value, 0),
            "dead_lettered": by_status.get(OutboxStatus.DEAD_LETTERED.value, 0),
            "oldest_pending_age_seconds": oldest_age,
            "dead_letter_open": dead_open,
        }


async def enqueue_sync_event(
    session: AsyncSession,
    event_type: str,
    entity_type: str,
    entity_id: str,
    payload: Optional[Dict[str, Any]] = None,
    priority: Optional[int] = None,
    idempotency_key: Optional[str] = None,
) -> Optional[int]:
    """
    Punto de entrada para los repositorios de negocio.

    Debe llamarse con la MISMA sesión que la escritura de negocio y antes de
    su commit.
    """
    return await OutboxRepository(session).enqueue(
        event_type,
        entity_type,
        entity_id,
        payload,
        priority=priority,
        idempotency_key=idempotency_key,
    )
