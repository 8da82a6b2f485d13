"""
Tests del fast-lane de usuarios: webhook firmado, endpoint batch y read-through.
"""
import json
from dataclasses import replace

import pytest
from sqlalchemy import select

from coaching_sync.application.dto.sync_dto import InboundSyncRequestDTO
from coaching_sync.application.use_cases.user_sync_use_cases import UserSyncUseCases
from coaching_sync.infrastructure.database.models import SyncInboxEventModel, UserModel
from coaching_sync.infrastructure.external.airtable_sync.field_mappings import USER_FIELDS
from coaching_sync.shared.exceptions.auth import (
    InvalidSignatureException,
    MissingSignatureException,
    UnauthorizedException,
)
from coaching_sync.shared.exceptions.domain import (
    FeatureDisabledException,
    SyncNotConfiguredException,
    ValidationException,
)
from coaching_sync.shared.utils.webhook_auth import compute_signature


USER_REC = "recUser0000000001"


def _webhook_body(event_id="evt-1", event_type="user.updated", **user) -> bytes:
    payload = {
        "eventId": event_id,
        "eventType": event_type,
        "occurredAt": "2025-06-15T10:00:00Z",
        "user": {
            "id": USER_REC,
            "email": "ana@example.com",
            "name": "Ana",
            "role": "user",
            "languageCode": "nl",
            "passwordHash": "bcrypt$hash",
            **user,
        },
    }
    return json.dumps(payload).encode("utf-8")


def _sign(body: bytes, secret: str = "webhook-secret") -> str:
    return f"sha256={compute_signature(body, secret)}"


async def _users(session_factory):
    async with session_factory() as session:
        return (await session.execute(select(UserModel))).scalars().all()


@pytest.fixture
def use_cases(db_session, fake_airtable, sync_config):
    return UserSyncUseCases(db_session, fake_airtable, sync_config)


class TestWebhook:
    """Webhook firmado de usuarios."""

    @pytest.mark.asyncio
    async def test_valid_webhook_upserts_user(self, use_cases, session_factory):
        body = _webhook_body()

        response = await use_cases.handle_user_webhook(body, _sign(body))

        assert response.deduplicated is False
        users = await _users(session_factory)
        assert len(users) == 1
        assert (users[0].id, users[0].email, users[0].language_code) == (USER_REC, "ana@example.com", "nl")
        assert users[0].password_hash == "bcrypt$hash"

    @pytest.mark.asyncio
    async def test_duplicate_event_is_not_applied_twice(self, use_cases, session_factory):
        body = _webhook_body()
        await use_cases.handle_user_webhook(body, _sign(body))

        # Mismo eventId con otro contenido: no se aplica
        second = _webhook_body(name="Otra")
        response = await use_cases.handle_user_webhook(second, _sign(second))

        assert response.deduplicated is True
        users = await _users(session_factory)
        assert users[0].name == "Ana"
        async with session_factory() as session:
            markers = (await session.execute(select(SyncInboxEventModel))).scalars().all()
        assert [m.event_id for m in markers] == ["evt-1"]

    @pytest.mark.asyncio
    async def test_deleted_event_soft_deletes_user(self, use_cases, session_factory):
        created = _webhook_body(event_id="evt-1", event_type="user.created")
        await use_cases.handle_user_webhook(created, _sign(created))

        deleted = _webhook_body(event_id="evt-2", event_type="user.deleted")
        await use_cases.handle_user_webhook(deleted, _sign(deleted))

        users = await _users(session_factory)
        assert users[0].status == "deleted"

    @pytest.mark.asyncio
    async def test_bad_signature_is_rejected_without_side_effects(self, use_cases, session_factory):
        body = _webhook_body()

        with pytest.raises(InvalidSignatureException):
            await use_cases.handle_user_webhook(body, _sign(body, "otro"))

        assert await _users(session_factory) == []

    @pytest.mark.asyncio
    async def test_missing_signature_is_rejected(self, use_cases):
        with pytest.raises(MissingSignatureException):
            await use_cases.handle_user_webhook(_webhook_body(), None)

    @pytest.mark.asyncio
    async def test_invalid_payload_is_validation_error(self, use_cases):
        body = _webhook_body(email="no-es-un-email")

        with pytest.raises(ValidationException):
            await use_cases.handle_user_webhook(body, _sign(body))

    @pytest.mark.asyncio
    async def test_disabled_flag_rejects_webhook(self, db_session, fake_airtable, sync_config):
        use_cases = UserSyncUseCases(db_session, fake_airtable, replace(sync_config, user_webhook_enabled=False))
        body = _webhook_body()

        with pytest.raises(FeatureDisabledException):
            await use_cases.handle_user_webhook(body, _sign(body))

    @pytest.mark.asyncio
    async def test_missing_secret_is_configuration_error(self, db_session, fake_airtable, sync_config):
        use_cases = UserSyncUseCases(db_session, fake_airtable, replace(sync_config, user_sync_secret=""))
        body = _webhook_body()

        with pytest.raises(SyncNotConfiguredException):
            await use_cases.handle_user_webhook(body, _sign(body))


class TestInboundBatch:
    """Endpoint batch con secreto compartido."""

    @pytest.mark.asyncio
    async def test_records_are_imported(self, use_cases, session_factory):
        request = InboundSyncRequestDTO.model_validate({
            "table": "users",
            "eventId": "batch-1",
            "records": [
                {"id": USER_REC, "email": "ana@example.com", "name": "Ana"},
                {"id": "recUser0000000002", "fields": {"email": "bo@example.com", "name": "Bo"}},
                {"id": "recUser0000000003", "name": "Sin e-mail"},
            ],
        })

        response = await use_cases.handle_inbound_batch(request, "inbound-secret")

        assert response.synced == 2
        assert sorted(u.email for u in await _users(session_factory)) == ["ana@example.com", "bo@example.com"]

    @pytest.mark.asyncio
    async def test_duplicate_batch_is_deduplicated(self, use_cases):
        request = InboundSyncRequestDTO.model_validate({
            "table": "users",
            "eventId": "batch-1",
            "records": [{"id": USER_REC, "email": "ana@example.com", "name": "Ana"}],
        })
        await use_cases.handle_inbound_batch(request, "inbound-secret")

        response = await use_cases.handle_inbound_batch(request, "inbound-secret")

        assert response.deduplicated is True
        assert response.synced == 0

    @pytest.mark.asyncio
    async def test_record_id_is_loaded_from_airtable(self, use_cases, fake_airtable, sync_config, session_factory):
        fake_airtable.add_record(
            sync_config.tables.users,
            {USER_FIELDS["name"]: "Ana", USER_FIELDS["email"]: "ana@example.com"},
            record_id=USER_REC,
        )
        request = InboundSyncRequestDTO.model_validate({"table": "users", "recordId": USER_REC})

        response = await use_cases.handle_inbound_batch(request, "inbound-secret")

        assert response.synced == 1
        assert [u.id for u in await _users(session_factory)] == [USER_REC]

    @pytest.mark.asyncio
    async def test_wrong_secret_is_unauthorized(self, use_cases):
        request = InboundSyncRequestDTO.model_validate({"table": "users", "recordId": USER_REC})

        with pytest.raises(UnauthorizedException):
            await use_cases.handle_inbound_batch(request, "nope")

    @pytest.mark.asyncio
    async def test_other_tables_are_rejected(self, use_cases):
        request = InboundSyncRequestDTO.model_validate({"table": "programs", "recordId": USER_REC})

        with pytest.raises(ValidationException):
            await use_cases.handle_inbound_batch(request, "inbound-secret")

    @pytest.mark.asyncio
    async def test_empty_batch_is_rejected(self, use_cases):
        request = InboundSyncRequestDTO.model_validate({"table": "users", "eventId": "x", "records": []})

        with pytest.raises(ValidationException):
            await use_cases.handle_inbound_batch(request, "inbound-secret")


class TestReadThrough:
    """Lectura con fallback a Airtable."""

    @pytest.mark.asyncio
    async def test_unknown_email_is_fetched_from_airtable(self, use_cases, fake_airtable, sync_config, session_factory):
        fake_airtable.add_record(
            sync_config.tables.users,
            {USER_FIELDS["name"]: "Ana", USER_FIELDS["email"]: "ana@example.com", "Status": "Actief"},
            record_id=USER_REC,
        )

        user = await use_cases.get_user_by_email_with_read_through("ana@example.com")

        assert user is not None
        assert user.id == USER_REC
        async with session_factory() as session:
            markers = (await session.execute(select(SyncInboxEventModel))).scalars().all()
        assert markers[0].source == "airtable_readthrough"
        assert markers[0].event_id.endswith(f"-{USER_REC}")

    @pytest.mark.asyncio
    async def test_known_user_does_not_call_airtable(self, use_cases, fake_airtable, db_session):
        db_session.add(UserModel(id=USER_REC, name="Ana", email="ana@example.com"))
        await db_session.commit()

        user = await use_cases.get_user_by_email_with_read_through("ANA@example.com")

        assert user.id == USER_REC
        assert fake_airtable.calls == []

    @pytest.mark.asyncio
    async def test_read_through_can_be_disabled(self, db_session, fake_airtable, sync_config):
        use_cases = UserSyncUseCases(db_session, fake_airtable, replace(sync_config, user_readthrough_enabled=False))

        assert await use_cases.get_user_by_id_with_read_through(USER_REC) is None
        assert fake_airtable.calls == []

    @pytest.mark.asyncio
    async def test_unknown_id_returns_none(self, use_cases):
        assert await use_cases.get_user_by_id_with_read_through("recMissing0000001") is None

    @pytest.mark.asyncio
    async def test_poll_imports_all_users(self, use_cases, fake_airtable, sync_config, session_factory):
        for i in range(3):
            fake_airtable.add_record(
                sync_config.tables.users,
                {USER_FIELDS["name"]: f"U{i}", USER_FIELDS["email"]: f"u{i}@example.com"},
            )

        assert await use_cases.sync_all_users_from_airtable() == 3
        assert len(await _users(session_factory)) == 3

    @pytest.mark.asyncio
    async def test_without_airtable_client_is_configuration_error(self, db_session, sync_config):
        use_cases = UserSyncUseCases(db_session, None, sync_config)

        with pytest.raises(SyncNotConfiguredException):
            await use_cases.fetch_user_from_airtable_by_email("ana@example.com")
