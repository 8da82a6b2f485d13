"""
Casos de uso de dead letter: inspección y replay manual.
"""
from typing import List, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from coaching_sync.domain.entities.sync_event import DeadLetter
from coaching_sync.infrastructure.external.airtable_sync.types import utc_now
from coaching_sync.infrastructure.repositories.dead_letter_repository import DeadLetterRepository
from coaching_sync.infrastructure.repositories.outbox_repository import OutboxRepository
from coaching_sync.shared.constants.sync_constants import REPLAY_PRIORITY


class ReplayUseCases:
    """
    El dispatcher nunca resucita dead letters por su cuenta: solo este flujo,
    disparado por un operador, vuelve a encolarlos.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.dead_letters = DeadLetterRepository(db)
        self.outbox = OutboxRepository(db)

    async def replay(self, dead_letter_id: int) -> Optional[int]:
        """
        Re-encola el evento muerto como evento nuevo y retorna su id de outbox.
        None si el dead letter no existe.
        """
        dead = await self.dead_letters.get(dead_letter_id)
        if dead is None:
            return None

        now = utc_now()
        key = f"replay:{dead_letter_id}:{int(now.timestamp() * 1000)}"
        outbox_id = await self.outbox.reinsert(dead, priority=REPLAY_PRIORITY, idempotency_key=key)
        await self.dead_letters.mark_replayed(dead_letter_id, outbox_id, now)
        await self.db.commit()

        logger.info(
            f"Dead letter #{dead_letter_id} ({dead.entity_type}:{dead.entity_id}) "
            f"re-encolado como evento {outbox_id}"
        )
        return outbox_id

    async def replay_dead_letter(self, dead_letter_id: int) -> bool:
        """True si el dead letter existía y se re-encoló."""
        return await self.replay(dead_letter_id) is not None

    async def list_dead_letters(self, limit: int = 50, include_replayed: bool = True) -> List[DeadLetter]:
        return await self.dead_letters.list(limit=limit, include_replayed=include_replayed)
