"""
Repositorio de sync_dead_letter.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coaching_sync.domain.entities.sync_event import DeadLetter
from coaching_sync.infrastructure.database.models import SyncDeadLetterModel


class DeadLetterRepository:
    """Consulta y auditoría de eventos muertos."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, dead_letter_id: int) -> Optional[DeadLetter]:
        result = await self.session.execute(
            select(SyncDeadLetterModel).where(SyncDeadLetterModel.id == dead_letter_id)
        )
        row = result.scalar_one_or_none()
        return DeadLetter.from_model(row) if row else None

    async def list(self, limit: int = 50, include_replayed: bool = True) -> List[DeadLetter]:
        """Eventos muertos, más recientes primero."""
        query = select(SyncDeadLetterModel)
        if not include_replayed:
            query = query.where(SyncDeadLetterModel.replayed_at.is_(None))
        result = await self.session.execute(
            query.order_by(SyncDeadLetterModel.id.desc()).limit(limit)
        )
        return [DeadLetter.from_model(row) for row in result.scalars().all()]

    async def mark_replayed(
        self,
        dead_letter_id: int,
        replay_outbox_id: int,
        replayed_at: datetime,
    ) -> None:
        await self.session.execute(
            update(SyncDeadLetterModel)
            .where(SyncDeadLetterModel.id == dead_letter_id)
            .values(replayed_at=replayed_at, replay_outbox_id=replay_outbox_id)
        )
