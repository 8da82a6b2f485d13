"""
Modelos de base de datos (ORM).

Dos grupos:
- Tablas propias del motor de sync: outbox, mapa de IDs, inbox, dead letter.
- Espejo relacional de Airtable que escriben el sweep y el fast-lane.
"""
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects import postgresql
from sqlalchemy.sql import false, func, text

from coaching_sync.infrastructure.database.session import Base
from coaching_sync.infrastructure.external.airtable_sync.types import utc_now


# JSONB en Postgres (soporta IS DISTINCT FROM), JSON genérico en SQLite.
JsonType = JSON().with_variant(postgresql.JSONB(), "postgresql")


def new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Motor de sincronizacion
# ---------------------------------------------------------------------------


class SyncOutboxModel(Base):
    """
    Evento pendiente de replicar hacia Airtable.

    Estados: pending -> in_flight -> done | failed_retryable | dead_lettered.
    Un evento done no se vuelve a modificar.
    """

    __tablename__ = "sync_outbox"
    __table_args__ = (
        Index("ix_sync_outbox_claim", "status", "next_attempt_at"),
        Index("ix_sync_outbox_priority", "priority", "id"),
        Index("ix_sync_outbox_entity", "entity_type", "entity_id"),
        # Un solo evento vivo por (entidad, seq); las reinserciones desde dead letter
        # conservan su seq original y quedan fuera del índice
        Index(
            "uq_sync_outbox_entity_seq",
            "entity_type",
            "entity_id",
            "entity_seq",
            unique=True,
            postgresql_where=text("NOT is_replay"),
            sqlite_where=text("is_replay = 0"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(16), nullable=False)
    entity_type = Column(String(64), nullable=False)
    entity_id = Column(String(255), nullable=False)
    payload = Column(JsonType, nullable=False, default=dict)
    priority = Column(Integer, nullable=False, default=100)
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    status = Column(String(32), nullable=False, default="pending")
    entity_seq = Column(Integer, nullable=False, default=1)
    is_replay = Column(Boolean, nullable=False, default=False, server_default=false())
    idempotency_key = Column(String(255), nullable=True, unique=True)
    last_error = Column(Text, nullable=True)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    claim_token = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return (
            f"<SyncOutbox(id={self.id}, {self.event_type} {self.entity_type}:{self.entity_id}, "
            f"status={self.status}, attempts={self.attempt_count})>"
        )


class AirtableIdMapModel(Base):
    """Relación (entity_type, postgres_id) <-> record id de Airtable."""

    __tablename__ = "airtable_id_map"
    __table_args__ = (
        UniqueConstraint("entity_type", "postgres_id", name="uq_airtable_id_map_entity"),
        Index("ix_airtable_id_map_reverse", "entity_type", "airtable_record_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(64), nullable=False)
    postgres_id = Column(String(255), nullable=False)
    airtable_record_id = Column(String(32), nullable=False)
    last_synced_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    last_applied_seq = Column(Integer, nullable=True)

    def __repr__(self):
        return f"<AirtableIdMap({self.entity_type}:{self.postgres_id} -> {self.airtable_record_id})>"


class SyncInboxEventModel(Base):
    """Marcador de deduplicación para eventos entrantes."""

    __tablename__ = "sync_inbox_events"
    __table_args__ = (
        UniqueConstraint("source", "event_id", name="uq_sync_inbox_source_event"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(255), nullable=False)
    source = Column(String(64), nullable=False)
    received_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class SyncDeadLetterModel(Base):
    """Evento del outbox que agotó reintentos o falló de forma permanente."""

    __tablename__ = "sync_dead_letter"

    id = Column(Integer, primary_key=True, autoincrement=True)
    outbox_id = Column(Integer, nullable=False, index=True)
    event_type = Column(String(16), nullable=False)
    entity_type = Column(String(64), nullable=False)
    entity_id = Column(String(255), nullable=False)
    payload = Column(JsonType, nullable=False, default=dict)
    priority = Column(Integer, nullable=False, default=100)
    attempt_count = Column(Integer, nullable=False, default=0)
    entity_seq = Column(Integer, nullable=False, default=1)
    last_error = Column(Text, nullable=True)
    dead_lettered_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    replayed_at = Column(DateTime(timezone=True), nullable=True)
    replay_outbox_id = Column(Integer, nullable=True)

    def __repr__(self):
        return f"<SyncDeadLetter(id={self.id}, outbox_id={self.outbox_id}, {self.entity_type}:{self.entity_id})>"


# ---------------------------------------------------------------------------
# Espejo relacional de Airtable
# ---------------------------------------------------------------------------


class UserModel(Base):
    """Usuario. Por convención el id ES el record id de Airtable."""

    __tablename__ = "users"

    id = Column(String(32), primary_key=True)
    name = Column(String(255), nullable=False, default="")
    email = Column(String(320), nullable=False, unique=True, index=True)
    role = Column(String(64), nullable=True)
    language_code = Column(String(16), nullable=True)
    password_hash = Column(String(255), nullable=True)
    last_login = Column(String(64), nullable=True)
    bonus_points = Column(Integer, nullable=True)
    badges = Column(Text, nullable=True)
    level = Column(Integer, nullable=True)
    status = Column(String(16), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, status={self.status})>"


class ReferenceMethodModel(Base):
    """Catálogo de métodos (solo lectura, payload crudo de Airtable)."""

    __tablename__ = "reference_methods"

    id = Column(String(32), primary_key=True)
    payload = Column(JsonType, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class ReferenceGoalModel(Base):
    __tablename__ = "reference_goals"

    id = Column(String(32), primary_key=True)
    payload = Column(JsonType, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class ReferenceDayModel(Base):
    __tablename__ = "reference_days"

    id = Column(String(32), primary_key=True)
    payload = Column(JsonType, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class ReferenceOvertuigingModel(Base):
    """Catálogo de overtuigingen (creencias)."""

    __tablename__ = "reference_overtuigingen"

    id = Column(String(32), primary_key=True)
    payload = Column(JsonType, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class ReferenceMindsetCategoryModel(Base):
    """Categorías de creencias."""

    __tablename__ = "reference_mindset_categories"

    id = Column(String(32), primary_key=True)
    payload = Column(JsonType, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class TranslationModel(Base):
    __tablename__ = "translations"

    key = Column(String(255), primary_key=True)
    nl = Column(Text, nullable=False, default="")
    fr = Column(Text, nullable=True)
    en = Column(Text, nullable=True)
    context = Column(Text, nullable=True)
    airtable_record_id = Column(String(32), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class PersonalGoalModel(Base):
    __tablename__ = "personal_goals"

    id = Column(String(36), primary_key=True, default=new_uuid)
    airtable_record_id = Column(String(32), nullable=True, unique=True)
    user_id = Column(String(32), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    schedule_days = Column(JsonType, nullable=True)
    status = Column(String(64), nullable=False, default="Actief")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class ProgramModel(Base):
    __tablename__ = "programs"

    id = Column(String(36), primary_key=True, default=new_uuid)
    airtable_record_id = Column(String(32), nullable=True, unique=True)
    user_id = Column(String(32), nullable=False, index=True)
    name = Column(String(255), nullable=False, default="")
    start_date = Column(Date, nullable=True)
    duration = Column(String(64), nullable=False, default="4 weken")
    end_date = Column(Date, nullable=True)
    status = Column(String(64), nullable=True)
    creation_type = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)
    goals = Column(JsonType, nullable=False, default=list)
    methods = Column(JsonType, nullable=False, default=list)
    days_of_week = Column(JsonType, nullable=False, default=list)
    overtuigingen = Column(JsonType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    def __repr__(self):
        return f"<Program(id={self.id}, user={self.user_id}, airtable={self.airtable_record_id})>"


class ProgramScheduleModel(Base):
    """Sesión planificada de un programa. method_usage_ids es un rollup cacheado."""

    __tablename__ = "program_schedule"

    id = Column(String(36), primary_key=True, default=new_uuid)
    airtable_record_id = Column(String(32), nullable=True, unique=True)
    program_id = Column(String(36), nullable=False, index=True)
    planning_id = Column(String(255), nullable=True)
    session_date = Column(Date, nullable=True)
    day_of_week_id = Column(String(32), nullable=True)
    session_description = Column(Text, nullable=True)
    method_ids = Column(JsonType, nullable=False, default=list)
    goal_ids = Column(JsonType, nullable=False, default=list)
    method_usage_ids = Column(JsonType, nullable=False, default=list)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class MethodUsageModel(Base):
    __tablename__ = "method_usage"

    id = Column(String(36), primary_key=True, default=new_uuid)
    airtable_record_id = Column(String(32), nullable=True, unique=True)
    user_id = Column(String(32), nullable=False, index=True)
    method_id = Column(String(32), nullable=False)
    program_id = Column(String(36), nullable=True)
    program_schedule_id = Column(String(36), nullable=True, index=True)
    remark = Column(Text, nullable=True)
    used_at = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class HabitUsageModel(Base):
    __tablename__ = "habit_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "method_id", "usage_date", name="uq_habit_usage_user_method_date"),
    )

    id = Column(String(36), primary_key=True, default=new_uuid)
    airtable_record_id = Column(String(32), nullable=True, unique=True)
    user_id = Column(String(32), nullable=False)
    method_id = Column(String(32), nullable=False)
    usage_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class PersonalGoalUsageModel(Base):
    __tablename__ = "personal_goal_usage"

    id = Column(String(36), primary_key=True, default=new_uuid)
    airtable_record_id = Column(String(32), nullable=True, unique=True)
    user_id = Column(String(32), nullable=False, index=True)
    personal_goal_id = Column(String(36), nullable=False)
    usage_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class OvertuigingUsageModel(Base):
    __tablename__ = "overtuiging_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "overtuiging_id", name="uq_overtuiging_usage_user_overtuiging"),
    )

    id = Column(String(36), primary_key=True, default=new_uuid)
    airtable_record_id = Column(String(32), nullable=True, unique=True)
    user_id = Column(String(32), nullable=False)
    overtuiging_id = Column(String(32), nullable=False)
    program_id = Column(String(36), nullable=True)
    usage_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
