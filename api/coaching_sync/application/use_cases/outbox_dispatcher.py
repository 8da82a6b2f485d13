"""
Despacho del outbox hacia Airtable.

Ciclo de un lote:
1. Transacción corta: reclamar eventos elegibles y marcarlos in_flight.
2. Por evento: renovar el lease (si otro worker lo reclamó, se salta) y
   ejecutar el writer sin transacción abierta.
3. Transacción corta por evento: registrar el resultado
   (done, failed_retryable con backoff o dead letter), condicionada a que
   el claim_token siga vigente.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from coaching_sync.domain.entities.sync_event import OutboxEvent
from coaching_sync.infrastructure.external.airtable_sync.results import (
    Ok,
    PermanentErr,
    RetryableErr,
    WriteResult,
)
from coaching_sync.infrastructure.external.airtable_sync.sync_config import SyncEngineConfig
from coaching_sync.infrastructure.external.airtable_sync.types import utc_now
from coaching_sync.infrastructure.external.airtable_sync.writers import AirtableWriters
from coaching_sync.infrastructure.repositories.outbox_repository import OutboxRepository


@dataclass
class DispatchSummary:
    """Resultado de procesar un lote."""
    claimed: int = 0
    done: int = 0
    retried: int = 0
    dead_lettered: int = 0
    lost: int = 0


class OutboxDispatcher:
    """
    Consume el outbox por prioridad y antigüedad.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        writers: AirtableWriters,
        config: SyncEngineConfig,
    ):
        self.session_factory = session_factory
        self.writers = writers
        self.config = config

    async def process_batch(self, now: Optional[datetime] = None) -> DispatchSummary:
        """Reclama y procesa un lote de hasta batch_size eventos."""
        async with self.session_factory() as session:
            events = await OutboxRepository(session).claim_batch(
                self.config.batch_size,
                self.config.claim_lease_seconds,
                now=now,
            )
            await session.commit()

        summary = DispatchSummary(claimed=len(events))
        for event in events:
            if not await self._renew_lease(event):
                summary.lost += 1
                continue
            result = await self.write_outbox_event(event)
            outcome = await self._record_result(event, result)
            if outcome == "lost":
                summary.lost += 1
            elif outcome == "done":
                summary.done += 1
            elif outcome == "retry":
                summary.retried += 1
            else:
                summary.dead_lettered += 1

        if events:
            logger.info(
                f"Outbox: {summary.claimed} reclamados, {summary.done} ok, "
                f"{summary.retried} reintento, {summary.dead_lettered} dead letter, "
                f"{summary.lost} claim perdido"
            )
        return summary

    async def drain(self, max_batches: int = 100) -> DispatchSummary:
        """Procesa lotes hasta vaciar lo elegible (o llegar a max_batches)."""
        total = DispatchSummary()
        for _ in range(max_batches):
            summary = await self.process_batch()
            total.claimed += summary.claimed
            total.done += summary.done
            total.retried += summary.retried
            total.dead_lettered += summary.dead_lettered
            total.lost += summary.lost
            if summary.claimed < self.config.batch_size:
                break
        return total

    async def _renew_lease(self, event: OutboxEvent) -> bool:
        async with self.session_factory() as session:
            renewed = await OutboxRepository(session).renew_lease(
                event, self.config.claim_lease_seconds
            )
            await session.commit()
        return renewed

    async def write_outbox_event(self, event: OutboxEvent) -> WriteResult:
        """
        Ejecuta el writer del evento.

        Una excepción inesperada se registra y se trata como reintentable para
        que un evento defectuoso no bloquee al resto del lote.
        """
        try:
            return await self.writers.write(event)
        except Exception as e:
            logger.exception(
                f"Error inesperado escribiendo evento {event.id} "
                f"({event.entity_type}:{event.entity_id})"
            )
            return RetryableErr(f"{type(e).__name__}: {e}")

    async def _record_result(self, event: OutboxEvent, result: WriteResult) -> str:
        now = utc_now()
        async with self.session_factory() as session:
            repo = OutboxRepository(session)

            if isinstance(result, Ok):
                marked = await repo.mark_done(event, now=now)
                await session.commit()
                return "done" if marked else "lost"

            attempts = event.attempt_count + 1
            if isinstance(result, RetryableErr) and attempts <= self.config.max_retries:
                delay = self.config.backoff_seconds(attempts)
                marked = await repo.mark_retry(
                    event,
                    attempts,
                    now + timedelta(seconds=delay),
                    result.error,
                )
                await session.commit()
                if not marked:
                    return "lost"
                logger.warning(
                    f"Evento {event.id} ({event.entity_type}:{event.entity_id}) reintento "
                    f"{attempts}/{self.config.max_retries} en {delay:.0f}s: {result.error}"
                )
                return "retry"

            error = result.error
            if isinstance(result, RetryableErr):
                error = f"Reintentos agotados ({attempts}): {result.error}"
            dead_id = await repo.move_to_dead_letter(event, attempts, error)
            await session.commit()
            if dead_id is None:
                return "lost"
            logger.error(
                f"Evento {event.id} ({event.entity_type}:{event.entity_id}) movido a "
                f"dead letter #{dead_id}: {error}"
            )
            return "dead_letter"
