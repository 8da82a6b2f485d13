"""
Helpers de INSERT ... ON CONFLICT independientes del dialecto (Postgres / SQLite).

- insert_or_ignore: inserta y retorna True, o False si ya existía (conflicto).
- upsert_if_changed: inserta o actualiza SOLO si alguna columna cambió.
  Si nada cambió no se toca la fila (ni siquiera updated_at): esto hace que
  re-ejecutar el sweep sobre datos idénticos deje las tablas byte a byte iguales.
"""
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from coaching_sync.infrastructure.database.session import dialect_name
from coaching_sync.infrastructure.external.airtable_sync.types import utc_now


def dialect_insert(session: AsyncSession, model):
    """Retorna el `insert()` con soporte ON CONFLICT del dialecto activo."""
    dialect = dialect_name(session)
    table = model.__table__
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Dialecto sin soporte de upsert: {dialect}")


async def insert_or_ignore(
    session: AsyncSession,
    model,
    values: dict[str, Any],
    *,
    conflict_cols: Sequence[str],
) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING. True si la fila es nueva."""
    table = model.__table__
    pk = list(table.primary_key.columns)[0]
    stmt = (
        dialect_insert(session, model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=list(conflict_cols))
        .returning(pk)
    )
    result = await session.execute(stmt)
    return result.first() is not None


async def upsert_if_changed(
    session: AsyncSession,
    model,
    values: dict[str, Any],
    *,
    conflict_cols: Sequence[str],
    update_cols: Optional[Iterable[str]] = None,
    touch_col: Optional[str] = "updated_at",
) -> bool:
    """
    INSERT ... ON CONFLICT DO UPDATE ... WHERE <alguna columna distinta>.

    Retorna True si se insertó o actualizó la fila; False si ya estaba igual.
    """
    table = model.__table__
    pk = list(table.primary_key.columns)[0]
    stmt = dialect_insert(session, model).values(**values)

    if update_cols is None:
        update_cols = [c for c in values if c not in conflict_cols and c != pk.name]
    update_cols = list(update_cols)
    if not update_cols:
        return await insert_or_ignore(session, model, values, conflict_cols=conflict_cols)

    set_ = {c: stmt.excluded[c] for c in update_cols}
    if touch_col and touch_col in table.c:
        set_[touch_col] = utc_now()

    changed = or_(*[table.c[c].is_distinct_from(stmt.excluded[c]) for c in update_cols])
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_cols),
        set_=set_,
        where=changed,
    ).returning(pk)

    result = await session.execute(stmt)
    return result.first() is not None
