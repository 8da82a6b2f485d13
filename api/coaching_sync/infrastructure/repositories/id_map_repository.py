"""
Mapa de identificadores (entity_type, postgres_id) <-> record id de Airtable.

- AirtableIdMapRepository: operaciones dentro de una sesión existente
  (el sweep las usa dentro de su transacción por fila).
- IdentifierMapper: fachada con transacciones propias y cortas, usada por los
  writers del outbox desde fuera de cualquier transacción de negocio.
"""
from typing import Callable, Optional

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from coaching_sync.domain.entities.sync_event import IdMapping
from coaching_sync.infrastructure.database.models import AirtableIdMapModel
from coaching_sync.infrastructure.database.upsert import dialect_insert, upsert_if_changed
from coaching_sync.infrastructure.external.airtable_sync.types import utc_now


class AirtableIdMapRepository:
    """Repositorio del mapa de IDs sobre una sesión."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, entity_type: str, postgres_id: str) -> Optional[IdMapping]:
        result = await self.session.execute(
            select(AirtableIdMapModel).where(
                AirtableIdMapModel.entity_type == entity_type,
                AirtableIdMapModel.postgres_id == str(postgres_id),
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return IdMapping(
            entity_type=row.entity_type,
            postgres_id=row.postgres_id,
            airtable_record_id=row.airtable_record_id,
            last_synced_at=row.last_synced_at,
            last_applied_seq=row.last_applied_seq,
        )

    async def find_external_id(self, entity_type: str, postgres_id: str) -> Optional[str]:
        result = await self.session.execute(
            select(AirtableIdMapModel.airtable_record_id).where(
                AirtableIdMapModel.entity_type == entity_type,
                AirtableIdMapModel.postgres_id == str(postgres_id),
            )
        )
        return result.scalar_one_or_none()

    async def find_postgres_id(self, entity_type: str, airtable_record_id: str) -> Optional[str]:
        result = await self.session.execute(
            select(AirtableIdMapModel.postgres_id)
            .where(
                AirtableIdMapModel.entity_type == entity_type,
                AirtableIdMapModel.airtable_record_id == airtable_record_id,
            )
            .order_by(AirtableIdMapModel.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        entity_type: str,
        postgres_id: str,
        airtable_record_id: str,
        applied_seq: Optional[int] = None,
    ) -> None:
        """
        Crea o actualiza el mapeo y marca last_synced_at.

        last_applied_seq nunca retrocede: se conserva el mayor entre el valor
        almacenado y `applied_seq`.
        """
        now = utc_now()
        table = AirtableIdMapModel.__table__
        stmt = dialect_insert(self.session, AirtableIdMapModel).values(
            entity_type=entity_type,
            postgres_id=str(postgres_id),
            airtable_record_id=airtable_record_id,
            last_synced_at=now,
            last_applied_seq=applied_seq,
        )
        new_seq = case(
            (stmt.excluded.last_applied_seq.is_(None), table.c.last_applied_seq),
            (table.c.last_applied_seq.is_(None), stmt.excluded.last_applied_seq),
            (
                stmt.excluded.last_applied_seq > table.c.last_applied_seq,
                stmt.excluded.last_applied_seq,
            ),
            else_=table.c.last_applied_seq,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["entity_type", "postgres_id"],
            set_={
                "airtable_record_id": stmt.excluded.airtable_record_id,
                "last_synced_at": now,
                "last_applied_seq": new_seq,
            },
        )
        await self.session.execute(stmt)

    async def ensure(self, entity_type: str, postgres_id: str, airtable_record_id: str) -> bool:
        """
        Garantiza el mapeo sin tocarlo si ya es correcto.

        Retorna True si se creó o cambió. Re-ejecutar el sweep con los mismos
        datos no modifica ninguna fila.
        """
        return await upsert_if_changed(
            self.session,
            AirtableIdMapModel,
            {
                "entity_type": entity_type,
                "postgres_id": str(postgres_id),
                "airtable_record_id": airtable_record_id,
                "last_synced_at": utc_now(),
            },
            conflict_cols=["entity_type", "postgres_id"],
            update_cols=["airtable_record_id"],
            touch_col="last_synced_at",
        )


class IdentifierMapper:
    """
    Fachada del mapa de IDs con una transacción corta por operación.

    Recibe una fábrica de sesiones (AsyncSessionLocal o la de tests) para no
    depender de la sesión del request.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self.session_factory = session_factory

    async def find_external_id(self, entity_type: str, postgres_id: str) -> Optional[str]:
        async with self.session_factory() as session:
            return await AirtableIdMapRepository(session).find_external_id(entity_type, postgres_id)

    async def find_postgres_id(self, entity_type: str, airtable_record_id: str) -> Optional[str]:
        async with self.session_factory() as session:
            return await AirtableIdMapRepository(session).find_postgres_id(
                entity_type, airtable_record_id
            )

    async def get_mapping(self, entity_type: str, postgres_id: str) -> Optional[IdMapping]:
        async with self.session_factory() as session:
            return await AirtableIdMapRepository(session).get(entity_type, postgres_id)

    async def upsert_mapping(
        self,
        entity_type: str,
        postgres_id: str,
        airtable_record_id: str,
        applied_seq: Optional[int] = None,
    ) -> None:
        async with self.session_factory() as session:
            await AirtableIdMapRepository(session).upsert(
                entity_type, postgres_id, airtable_record_id, applied_seq=applied_seq
            )
            await session.commit()

    async def ensure_mapping(self, entity_type: str, postgres_id: str, airtable_record_id: str) -> bool:
        async with self.session_factory() as session:
            changed = await AirtableIdMapRepository(session).ensure(
                entity_type, postgres_id, airtable_record_id
            )
            await session.commit()
            return changed
