"""
Sweep completo Airtable -> Postgres ("full sync").

Diseño (resumen):
- Recorre las tablas en orden de dependencias: catálogos de referencia,
  traducciones, usuarios, doelen, programas, planificación y tablas de uso.
- Cada registro se mapea a una fila (funciones puras map_*), se resuelve su id
  Postgres (mapa de IDs -> fila con ese airtable_record_id -> clave natural ->
  UUID nuevo) y se hace UPSERT solo si algo cambió.
- Commit por fila: una corrida interrumpida deja el trabajo hecho y la
  siguiente continúa.
- Referencias a padres sin mapeo: la fila se omite en esta corrida.

Estrategia de idempotencia:
- UPSERT ... WHERE <alguna columna distinta>: re-ejecutar sobre datos iguales
  no toca filas ni timestamps.
- El mapeo solo se escribe si falta o cambió.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Callable, Optional

from loguru import logger
from sqlalchemy import and_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from coaching_sync.infrastructure.database.models import (
    HabitUsageModel,
    MethodUsageModel,
    OvertuigingUsageModel,
    PersonalGoalModel,
    PersonalGoalUsageModel,
    ProgramModel,
    ProgramScheduleModel,
    ReferenceDayModel,
    ReferenceGoalModel,
    ReferenceMethodModel,
    ReferenceMindsetCategoryModel,
    ReferenceOvertuigingModel,
    TranslationModel,
    new_uuid,
)
from coaching_sync.infrastructure.database.session import is_postgres
from coaching_sync.infrastructure.database.upsert import upsert_if_changed
from coaching_sync.infrastructure.repositories.id_map_repository import AirtableIdMapRepository
from coaching_sync.infrastructure.repositories.user_repository import UserRepository, UserSyncRecord
from coaching_sync.shared.constants.sync_constants import (
    AIRTABLE_USER_STATUS_MAP,
    FULL_SYNC_ADVISORY_LOCK_ID,
)

from .airtable_client import AirtableClient
from .field_mappings import (
    HABIT_USAGE_FIELDS,
    METHOD_USAGE_FIELDS,
    OVERTUIGING_USAGE_FIELDS,
    PERSONAL_GOAL_FIELDS,
    PERSONAL_GOAL_USAGE_FIELDS,
    PROGRAM_FIELDS,
    PROGRAMMAPLANNING_FIELDS,
    TRANSLATION_FIELDS,
    USER_FIELDS,
)
from .sync_config import SyncEngineConfig
from .types import AirtableRecord, first_link, link_list, parse_european_date, utc_now


INACTIVE_GOAL_STATUSES = ("Gearchiveerd", "Verwijderd")
DEFAULT_PROGRAM_DURATION = "4 weken"


# ---------------------------------------------------------------------------
# Mapeo puro registro -> fila
# ---------------------------------------------------------------------------


def parse_date(value: Any) -> Optional[date]:
    """Fecha Airtable (ISO o DD/MM/YYYY) -> date, None si no se puede leer."""
    iso = parse_european_date(value)
    if not iso:
        return None
    try:
        return date.fromisoformat(iso[:10])
    except ValueError:
        return None


def _text(value: Any) -> Optional[str]:
    return str(value) if value else None


def _int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def map_user_status(raw: Any) -> str:
    """Estado Airtable -> estado Postgres. Cualquier valor desconocido es active."""
    if not raw:
        return "active"
    return AIRTABLE_USER_STATUS_MAP.get(str(raw), "active")


def map_user_record(record: AirtableRecord, *, status_field: str = "Status") -> UserSyncRecord:
    """Registro de la tabla Users (leído por field ID) -> UserSyncRecord."""
    fields = record.fields
    return UserSyncRecord(
        id=record.record_id,
        name=str(fields.get(USER_FIELDS["name"]) or ""),
        email=str(fields.get(USER_FIELDS["email"]) or ""),
        role=_text(fields.get(USER_FIELDS["role"])),
        language_code=_text(fields.get(USER_FIELDS["language_code"])),
        password_hash=_text(fields.get(USER_FIELDS["password_hash"])),
        last_login=_text(fields.get(USER_FIELDS["last_login"])),
        bonus_points=_int(fields.get(USER_FIELDS["bonus_points"])) or None,
        badges=_text(fields.get(USER_FIELDS["badges"])),
        level=_int(fields.get(USER_FIELDS["level"])) or None,
        status=map_user_status(fields.get(status_field)),
    )


def map_translation(record: AirtableRecord) -> Optional[dict[str, Any]]:
    fields = record.fields
    key = str(fields.get(TRANSLATION_FIELDS["key"]) or "").strip()
    if not key:
        return None
    return {
        "key": key,
        "nl": str(fields.get(TRANSLATION_FIELDS["nl"]) or ""),
        "fr": _text(fields.get(TRANSLATION_FIELDS["fr"])),
        "en": _text(fields.get(TRANSLATION_FIELDS["en"])),
        "context": _text(fields.get(TRANSLATION_FIELDS["context"])),
        "airtable_record_id": record.record_id,
    }


def parse_schedule_days(raw: Any) -> Optional[list[str]]:
    """'Maandag, Woensdag' o lista -> lista; None si está vacío."""
    if isinstance(raw, list):
        days = [str(d) for d in raw]
    elif isinstance(raw, str):
        days = [d.strip() for d in raw.split(",") if d.strip()]
    else:
        return None
    return days or None


def map_personal_goal(record: AirtableRecord) -> Optional[dict[str, Any]]:
    fields = record.fields
    user_id = first_link(fields.get(PERSONAL_GOAL_FIELDS["user_id"]))
    if not user_id:
        return None
    status = str(fields.get(PERSONAL_GOAL_FIELDS["status"]) or "Actief")
    return {
        "user_id": user_id,
        "name": str(fields.get(PERSONAL_GOAL_FIELDS["name"]) or "Persoonlijk doel"),
        "description": _text(fields.get(PERSONAL_GOAL_FIELDS["description"])),
        "active": status not in INACTIVE_GOAL_STATUSES,
        "schedule_days": parse_schedule_days(fields.get(PERSONAL_GOAL_FIELDS["schedule_days"])),
        "status": status,
    }


def map_program(record: AirtableRecord) -> Optional[dict[str, Any]]:
    fields = record.fields
    user_id = first_link(fields.get(PROGRAM_FIELDS["user_id"]))
    if not user_id:
        return None
    return {
        "user_id": user_id,
        "name": str(fields.get(PROGRAM_FIELDS["program_id"]) or ""),
        "start_date": parse_date(fields.get(PROGRAM_FIELDS["start_date"])),
        "duration": str(fields.get(PROGRAM_FIELDS["duration"]) or DEFAULT_PROGRAM_DURATION),
        "end_date": parse_date(fields.get(PROGRAM_FIELDS["end_date"])),
        "status": _text(fields.get(PROGRAM_FIELDS["status"])),
        "creation_type": _text(fields.get(PROGRAM_FIELDS["creation_type"])),
        "notes": _text(fields.get(PROGRAM_FIELDS["notes"])),
        "goals": link_list(fields.get(PROGRAM_FIELDS["goals"])),
        "methods": link_list(fields.get(PROGRAM_FIELDS["methods"])),
        "days_of_week": link_list(fields.get(PROGRAM_FIELDS["days_of_week"])),
        "overtuigingen": link_list(fields.get(PROGRAM_FIELDS["overtuigingen"])),
    }


@dataclass
class FullSyncCounts:
    """Registros procesados por tabla en una corrida del sweep."""

    users: int = 0
    reference_methods: int = 0
    reference_goals: int = 0
    reference_days: int = 0
    reference_overtuigingen: int = 0
    reference_mindset_categories: int = 0
    translations: int = 0
    personal_goals: int = 0
    programs: int = 0
    schedules: int = 0
    method_usage: int = 0
    habit_usage: int = 0
    personal_goal_usage: int = 0
    overtuiging_usage: int = 0
    skipped: int = 0
    errors: int = 0
    lock_acquired: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class _SkipRecord(Exception):
    """El registro no se puede importar en esta corrida (padre sin mapeo, dato faltante)."""


class AirtableToPostgresSync:
    """
    Orquestador del sweep completo.

    Uso:
        service = AirtableToPostgresSync(client, AsyncSessionLocal, config)
        counts = await service.run()
    """

    def __init__(
        self,
        airtable: AirtableClient,
        session_factory: Callable[[], AsyncSession],
        config: SyncEngineConfig,
        *,
        use_advisory_lock: bool = True,
    ) -> None:
        self._airtable = airtable
        self._session_factory = session_factory
        self._config = config
        self._use_advisory_lock = use_advisory_lock

    async def run(self) -> FullSyncCounts:
        """
        Ejecuta el sweep completo.

        En Postgres toma un advisory lock para que dos sweeps no corran a la vez;
        si está ocupado retorna sin hacer nada (lock_acquired=False).
        """
        async with self._session_factory() as lock_session:
            if self._use_advisory_lock and is_postgres(lock_session):
                locked = (
                    await lock_session.execute(
                        text("SELECT pg_try_advisory_lock(:key)"),
                        {"key": FULL_SYNC_ADVISORY_LOCK_ID},
                    )
                ).scalar()
                if not locked:
                    logger.warning("Sweep ya está corriendo (advisory lock ocupado). Saliendo.")
                    return FullSyncCounts(lock_acquired=False)
                try:
                    return await self._run_all()
                finally:
                    await lock_session.execute(
                        text("SELECT pg_advisory_unlock(:key)"),
                        {"key": FULL_SYNC_ADVISORY_LOCK_ID},
                    )
                    await lock_session.commit()

        return await self._run_all()

    async def _run_all(self) -> FullSyncCounts:
        counts = FullSyncCounts()
        tables = self._config.tables
        started = utc_now()
        logger.info("Iniciando sweep completo Airtable -> Postgres")

        counts.reference_methods = await self._sync_reference(tables.methods, ReferenceMethodModel, counts)
        counts.reference_goals = await self._sync_reference(tables.goals, ReferenceGoalModel, counts)
        counts.reference_days = await self._sync_reference(tables.days_of_week, ReferenceDayModel, counts)
        counts.reference_overtuigingen = await self._sync_reference(
            tables.overtuigingen, ReferenceOvertuigingModel, counts
        )
        counts.reference_mindset_categories = await self._sync_reference(
            tables.mindset_categories, ReferenceMindsetCategoryModel, counts
        )
        counts.translations = await self._sync_table(
            tables.translations, self._apply_translation, counts, by_field_id=False
        )
        counts.users = await self._sync_table(tables.users, self._apply_user, counts)
        counts.personal_goals = await self._sync_table(
            tables.personal_goals, self._apply_personal_goal, counts, by_field_id=False
        )
        counts.programs = await self._sync_table(tables.programs, self._apply_program, counts)
        counts.schedules = await self._sync_table(
            tables.programmaplanning, self._apply_schedule, counts
        )
        counts.method_usage = await self._sync_table(
            tables.method_usage, self._apply_method_usage, counts
        )
        await self._refresh_method_usage_rollup()
        counts.habit_usage = await self._sync_table(
            tables.habit_usage, self._apply_habit_usage, counts
        )
        counts.personal_goal_usage = await self._sync_table(
            tables.personal_goal_usage, self._apply_personal_goal_usage, counts, by_field_id=False
        )
        counts.overtuiging_usage = await self._sync_table(
            tables.overtuigingen_gebruik, self._apply_overtuiging_usage, counts, by_field_id=False
        )

        elapsed = (utc_now() - started).total_seconds()
        logger.success(f"Sweep completo en {elapsed:.1f}s: {counts.to_dict()}")
        return counts

    # ------------------------------------------------------------------
    # Infraestructura del recorrido
    # ------------------------------------------------------------------

    async def _fetch(self, table: str, *, by_field_id: bool) -> list[AirtableRecord]:
        return await asyncio.to_thread(self._airtable.list_all, table, by_field_id=by_field_id)

    async def _sync_table(
        self,
        table: str,
        apply: Callable[[AsyncSession, AirtableRecord], Any],
        counts: FullSyncCounts,
        *,
        by_field_id: bool = True,
    ) -> int:
        """Aplica `apply` a cada registro en su propia transacción."""
        records = await self._fetch(table, by_field_id=by_field_id)
        processed = 0
        for record in records:
            async with self._session_factory() as session:
                try:
                    await apply(session, record)
                    await session.commit()
                    processed += 1
                except _SkipRecord as e:
                    await session.rollback()
                    counts.skipped += 1
                    logger.debug(f"[{table}] {record.record_id} omitido: {e}")
                except Exception:
                    await session.rollback()
                    counts.errors += 1
                    logger.exception(f"[{table}] Error importando {record.record_id}")
        logger.info(f"[{table}] {processed}/{len(records)} registros sincronizados")
        return processed

    async def _sync_reference(self, table: str, model, counts: FullSyncCounts) -> int:
        async def apply(session: AsyncSession, record: AirtableRecord) -> None:
            await upsert_if_changed(
                session,
                model,
                {"id": record.record_id, "payload": record.fields},
                conflict_cols=["id"],
            )

        return await self._sync_table(table, apply, counts)

    async def _resolve_row_id(
        self,
        session: AsyncSession,
        entity_type: str,
        model,
        record_id: str,
        natural_key: Optional[dict[str, Any]] = None,
    ) -> str:
        """Id Postgres del registro: mapeo, airtable_record_id, clave natural o UUID nuevo."""
        postgres_id = await AirtableIdMapRepository(session).find_postgres_id(entity_type, record_id)
        if postgres_id:
            return postgres_id

        result = await session.execute(
            select(model.id).where(model.airtable_record_id == record_id)
        )
        existing = result.scalar_one_or_none()
        if existing:
            return existing

        if natural_key:
            conditions = [getattr(model, col) == value for col, value in natural_key.items()]
            result = await session.execute(select(model.id).where(and_(*conditions)).limit(1))
            existing = result.scalar_one_or_none()
            if existing:
                return existing

        return new_uuid()

    async def _map_parent(
        self,
        session: AsyncSession,
        entity_type: str,
        airtable_id: Optional[str],
    ) -> Optional[str]:
        """Id Postgres del padre; _SkipRecord si el link existe pero no tiene mapeo."""
        if not airtable_id:
            return None
        postgres_id = await AirtableIdMapRepository(session).find_postgres_id(entity_type, airtable_id)
        if postgres_id is None:
            raise _SkipRecord(f"{entity_type} {airtable_id} sin mapeo")
        return postgres_id

    async def _upsert_entity(
        self,
        session: AsyncSession,
        entity_type: str,
        model,
        record: AirtableRecord,
        row: dict[str, Any],
        natural_key: Optional[dict[str, Any]] = None,
    ) -> str:
        row_id = await self._resolve_row_id(session, entity_type, model, record.record_id, natural_key)
        values = {"id": row_id, "airtable_record_id": record.record_id, **row}
        await upsert_if_changed(session, model, values, conflict_cols=["id"])
        await AirtableIdMapRepository(session).ensure(entity_type, row_id, record.record_id)
        return row_id

    # ------------------------------------------------------------------
    # Aplicadores por tabla
    # ------------------------------------------------------------------

    async def _apply_translation(self, session: AsyncSession, record: AirtableRecord) -> None:
        row = map_translation(record)
        if row is None:
            raise _SkipRecord("traducción sin Key")
        await upsert_if_changed(session, TranslationModel, row, conflict_cols=["key"])

    async def _apply_user(self, session: AsyncSession, record: AirtableRecord) -> None:
        user = map_user_record(record, status_field=self._config.user_status_field)
        if not user.email:
            raise _SkipRecord("usuario sin e-mail")
        await UserRepository(session).upsert_from_airtable(user)

    async def _apply_personal_goal(self, session: AsyncSession, record: AirtableRecord) -> None:
        row = map_personal_goal(record)
        if row is None:
            raise _SkipRecord("doel sin usuario")
        await self._upsert_entity(session, "personal_goal", PersonalGoalModel, record, row)

    async def _apply_program(self, session: AsyncSession, record: AirtableRecord) -> None:
        row = map_program(record)
        if row is None:
            raise _SkipRecord("programa sin usuario")
        await self._upsert_entity(session, "program", ProgramModel, record, row)

    async def _apply_schedule(self, session: AsyncSession, record: AirtableRecord) -> None:
        fields = record.fields
        program_link = first_link(fields.get(PROGRAMMAPLANNING_FIELDS["program_id"]))
        if not program_link:
            raise _SkipRecord("planificación sin programa")
        program_id = await self._map_parent(session, "program", program_link)

        # method_usage_ids lo mantiene el rollup, no se importa
        row = {
            "program_id": program_id,
            "planning_id": _text(fields.get(PROGRAMMAPLANNING_FIELDS["planning_id"])),
            "session_date": parse_date(fields.get(PROGRAMMAPLANNING_FIELDS["date"])),
            "day_of_week_id": first_link(fields.get(PROGRAMMAPLANNING_FIELDS["day_of_week"])),
            "session_description": _text(fields.get(PROGRAMMAPLANNING_FIELDS["session_description"])),
            "method_ids": link_list(fields.get(PROGRAMMAPLANNING_FIELDS["methods"])),
            "goal_ids": link_list(fields.get(PROGRAMMAPLANNING_FIELDS["goals"])),
            "notes": _text(fields.get(PROGRAMMAPLANNING_FIELDS["notes"])),
        }
        await self._upsert_entity(session, "program_schedule", ProgramScheduleModel, record, row)

    async def _apply_method_usage(self, session: AsyncSession, record: AirtableRecord) -> None:
        fields = record.fields
        user_id = first_link(fields.get(METHOD_USAGE_FIELDS["user_id"]))
        method_id = first_link(fields.get(METHOD_USAGE_FIELDS["method_id"]))
        if not user_id or not method_id:
            raise _SkipRecord("uso de método sin usuario o método")

        program_id = await self._map_parent(
            session, "program", first_link(fields.get(METHOD_USAGE_FIELDS["program_id"]))
        )
        schedule_id = await self._map_parent(
            session,
            "program_schedule",
            first_link(fields.get(METHOD_USAGE_FIELDS["program_schedule_id"])),
        )
        if program_id is None and schedule_id is not None:
            result = await session.execute(
                select(ProgramScheduleModel.program_id).where(ProgramScheduleModel.id == schedule_id)
            )
            program_id = result.scalar_one_or_none()

        row = {
            "user_id": user_id,
            "method_id": method_id,
            "program_id": program_id,
            "program_schedule_id": schedule_id,
            "remark": _text(fields.get(METHOD_USAGE_FIELDS["remark"])),
            "used_at": parse_date(fields.get(METHOD_USAGE_FIELDS["used_at"])) or utc_now().date(),
        }
        await self._upsert_entity(session, "method_usage", MethodUsageModel, record, row)

    async def _apply_habit_usage(self, session: AsyncSession, record: AirtableRecord) -> None:
        fields = record.fields
        user_id = first_link(fields.get(HABIT_USAGE_FIELDS["user_id"]))
        method_id = first_link(fields.get(HABIT_USAGE_FIELDS["method_id"]))
        usage_date = parse_date(fields.get(HABIT_USAGE_FIELDS["date"]))
        if not user_id or not method_id or usage_date is None:
            raise _SkipRecord("hábito sin usuario, método o fecha")

        row = {"user_id": user_id, "method_id": method_id, "usage_date": usage_date}
        await self._upsert_entity(
            session, "habit_usage", HabitUsageModel, record, row, natural_key=row
        )

    async def _apply_personal_goal_usage(self, session: AsyncSession, record: AirtableRecord) -> None:
        fields = record.fields
        user_id = first_link(fields.get(PERSONAL_GOAL_USAGE_FIELDS["user_id"]))
        goal_link = first_link(fields.get(PERSONAL_GOAL_USAGE_FIELDS["personal_goal_id"]))
        usage_date = parse_date(fields.get(PERSONAL_GOAL_USAGE_FIELDS["date"]))
        if not user_id or not goal_link or usage_date is None:
            raise _SkipRecord("uso de doel sin usuario, doel o fecha")

        goal_id = await self._map_parent(session, "personal_goal", goal_link)
        row = {"user_id": user_id, "personal_goal_id": goal_id, "usage_date": usage_date}
        await self._upsert_entity(
            session, "personal_goal_usage", PersonalGoalUsageModel, record, row
        )

    async def _apply_overtuiging_usage(self, session: AsyncSession, record: AirtableRecord) -> None:
        fields = record.fields
        user_id = first_link(fields.get(OVERTUIGING_USAGE_FIELDS["user_id"]))
        overtuiging_id = first_link(fields.get(OVERTUIGING_USAGE_FIELDS["overtuiging_id"]))
        if not user_id or not overtuiging_id:
            raise _SkipRecord("uso de overtuiging sin usuario u overtuiging")

        program_id = await self._map_parent(
            session, "program", first_link(fields.get(OVERTUIGING_USAGE_FIELDS["program_id"]))
        )
        row = {
            "user_id": user_id,
            "overtuiging_id": overtuiging_id,
            "program_id": program_id,
            "usage_date": parse_date(fields.get(OVERTUIGING_USAGE_FIELDS["date"])) or utc_now().date(),
        }
        await self._upsert_entity(
            session,
            "overtuiging_usage",
            OvertuigingUsageModel,
            record,
            row,
            natural_key={"user_id": user_id, "overtuiging_id": overtuiging_id},
        )

    # ------------------------------------------------------------------
    # Rollup
    # ------------------------------------------------------------------

    async def _refresh_method_usage_rollup(self) -> int:
        """
        Recalcula program_schedule.method_usage_ids (ids de method_usage por
        sesión, ordenados por used_at y created_at). Solo escribe si cambió.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(MethodUsageModel.id, MethodUsageModel.program_schedule_id)
                .where(MethodUsageModel.program_schedule_id.is_not(None))
                .order_by(MethodUsageModel.used_at.asc(), MethodUsageModel.created_at.asc())
            )
            grouped: dict[str, list[str]] = {}
            for usage_id, schedule_id in result.all():
                grouped.setdefault(schedule_id, []).append(usage_id)

            result = await session.execute(
                select(ProgramScheduleModel.id, ProgramScheduleModel.method_usage_ids)
            )
            updated = 0
            now = utc_now()
            for schedule_id, current in result.all():
                desired = grouped.get(schedule_id, [])
                if list(current or []) == desired:
                    continue
                await session.execute(
                    update(ProgramScheduleModel)
                    .where(ProgramScheduleModel.id == schedule_id)
                    .values(method_usage_ids=desired, updated_at=now)
                )
                updated += 1
            await session.commit()

        if updated:
            logger.info(f"Rollup method_usage_ids actualizado en {updated} sesiones")
        return updated
