"""
Repositorio de usuarios (espejo Postgres de la tabla Users de Airtable).
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coaching_sync.infrastructure.database.models import UserModel
from coaching_sync.infrastructure.database.upsert import dialect_insert
from coaching_sync.infrastructure.external.airtable_sync.types import utc_now


@dataclass(frozen=True)
class UserSyncRecord:
    """Usuario tal como llega desde Airtable (fast-lane, webhook o sweep)."""

    id: str
    name: str
    email: str
    role: Optional[str] = None
    language_code: Optional[str] = None
    password_hash: Optional[str] = None
    last_login: Optional[str] = None
    bonus_points: Optional[int] = None
    badges: Optional[str] = None
    level: Optional[int] = None
    status: Optional[str] = None


# Columnas que conservan el valor existente cuando Airtable no trae dato
_KEEP_IF_NULL = ("password_hash", "last_login", "bonus_points", "badges", "level")


class UserRepository:
    """Operaciones sobre la tabla users."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_id(self, user_id: str) -> Optional[UserModel]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.id == user_id)
        )
        return result.scalar_one_or_none()

    async def find_by_email(self, email: str) -> Optional[UserModel]:
        result = await self.session.execute(
            select(UserModel).where(func.lower(UserModel.email) == email.lower()).limit(1)
        )
        return result.scalar_one_or_none()

    async def upsert_from_airtable(self, record: UserSyncRecord) -> bool:
        """
        Inserta o actualiza un usuario por id.

        name/email/role/language_code se sobrescriben (Airtable manda); el resto
        conserva el valor existente si el entrante es NULL. Solo escribe si algo
        cambió. Retorna True si la fila se insertó o modificó.
        """
        now = utc_now()
        values = {
            "id": record.id,
            "name": record.name,
            "email": record.email,
            "role": record.role,
            "language_code": record.language_code,
            "password_hash": record.password_hash,
            "last_login": record.last_login,
            "bonus_points": record.bonus_points,
            "badges": record.badges,
            "level": record.level,
            "status": record.status or "active",
            "created_at": now,
            "updated_at": now,
        }
        table = UserModel.__table__
        stmt = dialect_insert(self.session, UserModel).values(**values)

        new_values = {
            "name": stmt.excluded.name,
            "email": stmt.excluded.email,
            "role": stmt.excluded.role,
            "language_code": stmt.excluded.language_code,
            "status": stmt.excluded.status,
        }
        for col in _KEEP_IF_NULL:
            new_values[col] = func.coalesce(stmt.excluded[col], table.c[col])

        changed = None
        for col, expr in new_values.items():
            clause = table.c[col].is_distinct_from(expr)
            changed = clause if changed is None else changed | clause

        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={**new_values, "updated_at": now},
            where=changed,
        ).returning(UserModel.id)
        result = await self.session.execute(stmt)
        return result.first() is not None

    async def mark_deleted(self, user_id: str) -> bool:
        """Soft delete: status = deleted. True si el usuario existía."""
        result = await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(status="deleted", updated_at=utc_now())
        )
        return (result.rowcount or 0) > 0
