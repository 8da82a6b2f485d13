"""
Inbox de eventos entrantes: deduplicación por (source, event_id).
"""
from sqlalchemy.ext.asyncio import AsyncSession

from coaching_sync.infrastructure.database.models import SyncInboxEventModel
from coaching_sync.infrastructure.database.upsert import insert_or_ignore
from coaching_sync.infrastructure.external.airtable_sync.types import utc_now


class InboxRepository:
    """Marcadores de eventos ya recibidos."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def mark_received(self, event_id: str, source: str) -> bool:
        """
        Registra el evento. True si es nuevo, False si ya se había procesado.

        No hace commit: el marcador se persiste junto con el efecto del evento.
        """
        return await insert_or_ignore(
            self.session,
            SyncInboxEventModel,
            {"event_id": event_id, "source": source, "received_at": utc_now()},
            conflict_cols=["source", "event_id"],
        )



async def ensure_inbound_event_not_duplicate(
    session: AsyncSession,
    event_id: str,
    source: str,
) -> bool:
    """True si el evento no se había visto antes (y queda registrado)."""
    return await InboxRepository(session).mark_received(event_id, source)
