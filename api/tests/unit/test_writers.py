"""
Tests de los writers del outbox contra un Airtable en memoria.
"""
import pytest

from coaching_sync.domain.entities.sync_event import OutboxEvent
from coaching_sync.infrastructure.external.airtable_sync.airtable_client import (
    AirtableRequestError,
    AirtableRetryableError,
    AirtableTimeoutError,
)
from coaching_sync.infrastructure.external.airtable_sync.field_mappings import (
    HABIT_USAGE_FIELDS,
    METHOD_USAGE_FIELDS,
    OVERTUIGING_USAGE_FIELDS,
    PERSONAL_GOAL_FIELDS,
    PERSONAL_GOAL_USAGE_FIELDS,
    PERSOONLIJKE_OVERTUIGING_FIELDS,
    PROGRAM_FIELDS,
    USER_FIELDS,
)
from coaching_sync.infrastructure.external.airtable_sync.results import Ok, PermanentErr, RetryableErr
from coaching_sync.infrastructure.external.airtable_sync.writers import AirtableWriters
from coaching_sync.infrastructure.repositories.id_map_repository import IdentifierMapper


USER_REC = "recUser0000000001"
PROGRAM_REC = "recProgram0000001"


def _event(entity_type, entity_id, payload=None, event_type="upsert", seq=1, event_id=1):
    return OutboxEvent(
        id=event_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=payload or {},
        entity_seq=seq,
    )


@pytest.fixture
def mapper(session_factory):
    return IdentifierMapper(session_factory)


@pytest.fixture
def writers(fake_airtable, mapper, sync_config):
    return AirtableWriters(fake_airtable, mapper, sync_config)


class TestUpsert:
    """Create/update según el mapa de IDs."""

    @pytest.mark.asyncio
    async def test_method_usage_without_mapping_creates_record_and_mapping(
        self, writers, mapper, fake_airtable, sync_config
    ):
        event = _event(
            "method_usage",
            "u1",
            {"userId": "r1", "methodId": "m1", "usedAt": "2025-06-15"},
        )

        result = await writers.write(event)

        assert isinstance(result, Ok)
        assert result.created is True
        records = fake_airtable.tables[sync_config.tables.method_usage]
        assert list(records) == [result.external_id]
        assert records[result.external_id] == {
            METHOD_USAGE_FIELDS["user_id"]: ["r1"],
            METHOD_USAGE_FIELDS["method_id"]: ["m1"],
            METHOD_USAGE_FIELDS["used_at"]: "2025-06-15",
        }
        assert await mapper.find_external_id("method_usage", "u1") == result.external_id

    @pytest.mark.asyncio
    async def test_second_write_updates_same_record(self, writers, fake_airtable, sync_config):
        payload = {"userId": "r1", "methodId": "m1", "usedAt": "2025-06-15", "remark": "ok"}

        first = await writers.write(_event("method_usage", "u1", payload, seq=1))
        second = await writers.write(_event("method_usage", "u1", payload, seq=2, event_id=2))

        assert isinstance(second, Ok)
        assert second.created is False
        assert second.external_id == first.external_id
        assert len(fake_airtable.tables[sync_config.tables.method_usage]) == 1
        assert len(fake_airtable.calls_for("create")) == 1
        assert len(fake_airtable.calls_for("update")) == 1

    @pytest.mark.asyncio
    async def test_unmapped_program_reference_is_retryable(self, writers, fake_airtable):
        event = _event(
            "method_usage",
            "u1",
            {"userId": USER_REC, "methodId": "m1", "usedAt": "2025-06-15", "programId": "p-1"},
        )

        result = await writers.write(event)

        assert isinstance(result, RetryableErr)
        assert "program" in result.error
        assert fake_airtable.calls == []

    @pytest.mark.asyncio
    async def test_program_reference_is_resolved_through_mapping(
        self, writers, mapper, fake_airtable, sync_config
    ):
        await mapper.upsert_mapping("program", "p-1", PROGRAM_REC)
        event = _event(
            "method_usage",
            "u1",
            {"userId": USER_REC, "methodId": "m1", "usedAt": "2025-06-15", "programId": "p-1"},
        )

        result = await writers.write(event)

        fields = fake_airtable.tables[sync_config.tables.method_usage][result.external_id]
        assert fields[METHOD_USAGE_FIELDS["program_id"]] == [PROGRAM_REC]

    @pytest.mark.asyncio
    async def test_airtable_record_id_reference_passes_through(self, writers, fake_airtable, sync_config):
        event = _event(
            "method_usage",
            "u1",
            {"userId": USER_REC, "methodId": "m1", "usedAt": "2025-06-15", "programId": PROGRAM_REC},
        )

        result = await writers.write(event)

        fields = fake_airtable.tables[sync_config.tables.method_usage][result.external_id]
        assert fields[METHOD_USAGE_FIELDS["program_id"]] == [PROGRAM_REC]

    @pytest.mark.asyncio
    async def test_schedule_link_replaces_program_link(self, writers, mapper, fake_airtable, sync_config):
        await mapper.upsert_mapping("program", "p-1", PROGRAM_REC)
        await mapper.upsert_mapping("program_schedule", "s-1", "recSchedule000001")
        event = _event(
            "method_usage",
            "u1",
            {
                "userId": USER_REC,
                "methodId": "m1",
                "usedAt": "2025-06-15",
                "programId": "p-1",
                "programScheduleId": "s-1",
            },
        )

        result = await writers.write(event)

        fields = fake_airtable.tables[sync_config.tables.method_usage][result.external_id]
        assert fields[METHOD_USAGE_FIELDS["program_schedule_id"]] == ["recSchedule000001"]
        assert METHOD_USAGE_FIELDS["program_id"] not in fields

    @pytest.mark.asyncio
    async def test_stale_event_is_skipped(self, writers, mapper, fake_airtable):
        await mapper.upsert_mapping("program", "p-1", PROGRAM_REC, applied_seq=3)

        result = await writers.write(_event("program", "p-1", {"userId": USER_REC}, seq=2))

        assert isinstance(result, Ok)
        assert result.skipped is True
        assert result.external_id == PROGRAM_REC
        assert fake_airtable.calls == []

    @pytest.mark.asyncio
    async def test_applied_seq_is_recorded(self, writers, mapper):
        await writers.write(_event("program", "p-1", {"userId": USER_REC}, seq=4))

        assert (await mapper.get_mapping("program", "p-1")).last_applied_seq == 4


class TestEntityRules:
    """Reglas específicas por tipo de entidad."""

    @pytest.mark.asyncio
    async def test_program_create_applies_defaults_and_drops_empty_lists(
        self, writers, fake_airtable, sync_config
    ):
        event = _event(
            "program",
            "p-1",
            {"userId": USER_REC, "startDate": "2025-06-01", "goals": [], "methods": ["recM"], "notes": ""},
        )

        result = await writers.write(event)

        fields = fake_airtable.tables[sync_config.tables.programs][result.external_id]
        assert fields[PROGRAM_FIELDS["user_id"]] == [USER_REC]
        assert fields[PROGRAM_FIELDS["status"]] == "Actief"
        assert fields[PROGRAM_FIELDS["creation_type"]] == "Manueel"
        assert fields[PROGRAM_FIELDS["methods"]] == ["recM"]
        assert PROGRAM_FIELDS["goals"] not in fields
        assert PROGRAM_FIELDS["notes"] not in fields

    @pytest.mark.asyncio
    async def test_program_update_does_not_apply_defaults(self, writers, mapper, fake_airtable, sync_config):
        fake_airtable.add_record(sync_config.tables.programs, {}, record_id=PROGRAM_REC)
        await mapper.upsert_mapping("program", "p-1", PROGRAM_REC)

        await writers.write(_event("program", "p-1", {"userId": USER_REC, "duration": "6 weken"}))

        _, _, record_id, fields = fake_airtable.calls_for("update")[0]
        assert record_id == PROGRAM_REC
        assert PROGRAM_FIELDS["status"] not in fields
        assert fields[PROGRAM_FIELDS["duration"]] == "6 weken"

    @pytest.mark.asyncio
    async def test_personal_goal_schedule_days_are_joined(self, writers, fake_airtable, sync_config):
        event = _event(
            "personal_goal",
            "g-1",
            {"userId": USER_REC, "scheduleDays": ["Maandag", "Woensdag"]},
        )

        result = await writers.write(event)

        fields = fake_airtable.tables[sync_config.tables.personal_goals][result.external_id]
        assert fields[PERSONAL_GOAL_FIELDS["schedule_days"]] == "Maandag, Woensdag"
        assert fields[PERSONAL_GOAL_FIELDS["name"]] == "Persoonlijk doel"
        assert fields[PERSONAL_GOAL_FIELDS["status"]] == "Actief"

    @pytest.mark.asyncio
    async def test_schedule_create_without_program_is_retryable(self, writers, fake_airtable):
        result = await writers.write(_event("program_schedule", "s-1", {"date": "2025-06-20"}))

        assert isinstance(result, RetryableErr)
        assert fake_airtable.calls == []

    @pytest.mark.asyncio
    async def test_invalid_payload_is_permanent(self, writers):
        result = await writers.write(_event("method_usage", "u1", {"userId": "r1", "bogus": True}))

        assert isinstance(result, PermanentErr)

    @pytest.mark.asyncio
    async def test_unknown_entity_type_is_permanent(self, writers):
        result = await writers.write(_event("workout", "w1", {}))

        assert isinstance(result, PermanentErr)


class TestUserWriter:
    """Los usuarios comparten id entre stores y solo se actualizan."""

    @pytest.mark.asyncio
    async def test_user_update_uses_record_id(self, writers, fake_airtable, sync_config):
        fake_airtable.add_record(sync_config.tables.users, {}, record_id=USER_REC)

        result = await writers.write(_event("user", USER_REC, {"userId": USER_REC, "bonusPoints": 40, "level": 2}))

        assert isinstance(result, Ok)
        assert fake_airtable.tables[sync_config.tables.users][USER_REC] == {
            USER_FIELDS["bonus_points"]: 40,
            USER_FIELDS["level"]: 2,
        }

    @pytest.mark.asyncio
    async def test_user_without_airtable_id_is_retryable(self, writers, fake_airtable):
        result = await writers.write(_event("user", "42", {"userId": "42", "level": 2}))

        assert isinstance(result, RetryableErr)
        assert fake_airtable.calls == []

    @pytest.mark.asyncio
    async def test_user_without_fields_is_ok_without_calling_airtable(self, writers, fake_airtable):
        result = await writers.write(_event("user", USER_REC, {"userId": USER_REC}))

        assert isinstance(result, Ok)
        assert fake_airtable.calls == []

    @pytest.mark.asyncio
    async def test_user_delete_is_permanent(self, writers):
        result = await writers.write(_event("user", USER_REC, event_type="delete"))

        assert isinstance(result, PermanentErr)


class TestDelete:
    """Borrado: sin mapeo o 404 cuentan como éxito."""

    @pytest.mark.asyncio
    async def test_delete_without_mapping_is_noop(self, writers, fake_airtable):
        result = await writers.write(_event("habit_usage", "h-1", event_type="delete"))

        assert isinstance(result, Ok)
        assert result.skipped is True
        assert fake_airtable.calls == []

    @pytest.mark.asyncio
    async def test_delete_with_mapping_destroys_record(self, writers, mapper, fake_airtable, sync_config):
        record_id = fake_airtable.add_record(sync_config.tables.habit_usage, {"x": 1})
        await mapper.upsert_mapping("habit_usage", "h-1", record_id)

        result = await writers.write(_event("habit_usage", "h-1", event_type="delete"))

        assert isinstance(result, Ok)
        assert record_id not in fake_airtable.tables[sync_config.tables.habit_usage]

    @pytest.mark.asyncio
    async def test_delete_of_missing_record_is_success(self, writers, mapper):
        await mapper.upsert_mapping("habit_usage", "h-1", "recGone0000000001")

        result = await writers.write(_event("habit_usage", "h-1", event_type="delete"))

        assert isinstance(result, Ok)
        assert result.detail == "ya eliminado"


class TestAirtableErrors:
    """Traducción de errores de Airtable a resultados."""

    @pytest.mark.asyncio
    async def test_rate_limit_is_retryable(self, writers, fake_airtable):
        fake_airtable.fail_next("create", AirtableRetryableError("429", status_code=429))

        result = await writers.write(_event("program", "p-1", {"userId": USER_REC}))

        assert isinstance(result, RetryableErr)

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self, writers, fake_airtable):
        fake_airtable.fail_next("create", AirtableTimeoutError("timeout"))

        result = await writers.write(_event("program", "p-1", {"userId": USER_REC}))

        assert isinstance(result, RetryableErr)

    @pytest.mark.asyncio
    async def test_invalid_record_is_permanent(self, writers, fake_airtable):
        fake_airtable.fail_next("create", AirtableRequestError("422 INVALID_VALUE", status_code=422))

        result = await writers.write(_event("program", "p-1", {"userId": USER_REC}))

        assert isinstance(result, PermanentErr)

    @pytest.mark.asyncio
    async def test_update_of_missing_record_is_permanent(self, writers, mapper):
        await mapper.upsert_mapping("program", "p-1", "recGone0000000001")

        result = await writers.write(_event("program", "p-1", {"userId": USER_REC}))

        assert isinstance(result, PermanentErr)


class TestUsageWriters:
    """Registros de uso y overtuigingen personales."""

    @pytest.mark.asyncio
    async def test_habit_usage_creates_record_with_links(self, writers, mapper, fake_airtable, sync_config):
        event = _event(
            "habit_usage",
            "hu-1",
            {"userId": USER_REC, "methodId": "recMethod00000001", "date": "2025-06-15"},
        )

        result = await writers.write(event)

        assert isinstance(result, Ok)
        assert result.created is True
        records = fake_airtable.tables[sync_config.tables.habit_usage]
        assert records[result.external_id] == {
            HABIT_USAGE_FIELDS["user_id"]: [USER_REC],
            HABIT_USAGE_FIELDS["method_id"]: ["recMethod00000001"],
            HABIT_USAGE_FIELDS["date"]: "2025-06-15",
        }
        assert await mapper.find_external_id("habit_usage", "hu-1") == result.external_id

    @pytest.mark.asyncio
    async def test_personal_goal_usage_resolves_goal_through_mapping(
        self, writers, mapper, fake_airtable, sync_config
    ):
        await mapper.upsert_mapping("personal_goal", "pg-1", "recGoal0000000001")
        event = _event(
            "personal_goal_usage",
            "pgu-1",
            {"userId": USER_REC, "personalGoalId": "pg-1", "date": "2025-06-15"},
        )

        result = await writers.write(event)

        assert isinstance(result, Ok)
        assert result.created is True
        fields = fake_airtable.tables[sync_config.tables.personal_goal_usage][result.external_id]
        assert fields == {
            PERSONAL_GOAL_USAGE_FIELDS["user_id"]: [USER_REC],
            PERSONAL_GOAL_USAGE_FIELDS["personal_goal_id"]: ["recGoal0000000001"],
            PERSONAL_GOAL_USAGE_FIELDS["date"]: "2025-06-15",
        }

    @pytest.mark.asyncio
    async def test_personal_goal_usage_with_unsynced_goal_is_retryable(self, writers, mapper, fake_airtable):
        event = _event(
            "personal_goal_usage",
            "pgu-1",
            {"userId": USER_REC, "personalGoalId": "pg-404", "date": "2025-06-15"},
        )

        result = await writers.write(event)

        assert isinstance(result, RetryableErr)
        assert "personal_goal" in result.error
        assert fake_airtable.calls == []
        assert await mapper.find_external_id("personal_goal_usage", "pgu-1") is None

    @pytest.mark.asyncio
    async def test_overtuiging_usage_resolves_program_through_mapping(
        self, writers, mapper, fake_airtable, sync_config
    ):
        await mapper.upsert_mapping("program", "p-1", PROGRAM_REC)
        event = _event(
            "overtuiging_usage",
            "ou-1",
            {
                "userId": USER_REC,
                "overtuigingId": "recOvertuiging001",
                "programId": "p-1",
                "date": "2025-06-15",
            },
        )

        result = await writers.write(event)

        assert isinstance(result, Ok)
        fields = fake_airtable.tables[sync_config.tables.overtuigingen_gebruik][result.external_id]
        assert fields == {
            OVERTUIGING_USAGE_FIELDS["user_id"]: [USER_REC],
            OVERTUIGING_USAGE_FIELDS["overtuiging_id"]: ["recOvertuiging001"],
            OVERTUIGING_USAGE_FIELDS["program_id"]: [PROGRAM_REC],
            OVERTUIGING_USAGE_FIELDS["date"]: "2025-06-15",
        }

    @pytest.mark.asyncio
    async def test_persoonlijke_overtuiging_create_applies_defaults(
        self, writers, fake_airtable, sync_config
    ):
        event = _event("persoonlijke_overtuiging", "po-1", {"userId": USER_REC})

        result = await writers.write(event)

        assert isinstance(result, Ok)
        assert result.created is True
        fields = fake_airtable.tables[sync_config.tables.persoonlijke_overtuigingen][result.external_id]
        assert fields == {
            PERSOONLIJKE_OVERTUIGING_FIELDS["user_id"]: [USER_REC],
            PERSOONLIJKE_OVERTUIGING_FIELDS["name"]: "",
            PERSOONLIJKE_OVERTUIGING_FIELDS["status"]: "Actief",
        }

    @pytest.mark.asyncio
    async def test_persoonlijke_overtuiging_update_keeps_existing_status(
        self, writers, mapper, fake_airtable, sync_config
    ):
        table = sync_config.tables.persoonlijke_overtuigingen
        record_id = fake_airtable.add_record(table, {PERSOONLIJKE_OVERTUIGING_FIELDS["status"]: "Afgerond"})
        await mapper.upsert_mapping("persoonlijke_overtuiging", "po-1", record_id)

        result = await writers.write(
            _event("persoonlijke_overtuiging", "po-1", {"userId": USER_REC, "name": "Ik kan het"})
        )

        assert result.created is False
        assert fake_airtable.tables[table][record_id][PERSOONLIJKE_OVERTUIGING_FIELDS["status"]] == "Afgerond"
        assert fake_airtable.tables[table][record_id][PERSOONLIJKE_OVERTUIGING_FIELDS["name"]] == "Ik kan het"
