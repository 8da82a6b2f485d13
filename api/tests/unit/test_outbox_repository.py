"""
Tests del repositorio del outbox: encolado, secuencia por entidad y claim.
"""
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from coaching_sync.domain.entities.sync_event import DeadLetter
from coaching_sync.infrastructure.database.models import SyncDeadLetterModel, SyncOutboxModel
from coaching_sync.infrastructure.external.airtable_sync.types import utc_now
from coaching_sync.infrastructure.repositories.outbox_repository import (
    OutboxRepository,
    enqueue_sync_event,
)
from coaching_sync.shared.constants.sync_constants import DEFAULT_PRIORITY, USER_PRIORITY
from coaching_sync.shared.exceptions.domain import ValidationException


HABIT = {"userId": "recUser0000000001", "methodId": "recMethod00000001", "date": "2025-06-15"}


@pytest.mark.asyncio
async def test_enqueue_creates_pending_event(db_session) -> None:
    event_id = await enqueue_sync_event(db_session, "upsert", "habit_usage", "h1", HABIT)
    await db_session.commit()

    row = await OutboxRepository(db_session).get(event_id)
    assert row.status == "pending"
    assert row.attempt_count == 0
    assert row.priority == 100
    assert row.entity_seq == 1
    assert row.payload == HABIT


@pytest.mark.asyncio
async def test_user_events_default_to_user_priority(db_session) -> None:
    repo = OutboxRepository(db_session)
    user = {"userId": "recUser0000000001", "level": 3}
    user_event = await repo.enqueue("upsert", "user", "recUser0000000001", user)
    habit_event = await repo.enqueue("upsert", "habit_usage", "h1", HABIT)
    explicit = await repo.enqueue("upsert", "user", "recUser0000000001", user, priority=70)
    await db_session.commit()

    assert (await repo.get(user_event)).priority == USER_PRIORITY
    assert (await repo.get(habit_event)).priority == DEFAULT_PRIORITY
    assert (await repo.get(explicit)).priority == 70


@pytest.mark.asyncio
async def test_enqueue_rejects_invalid_payload(db_session) -> None:
    with pytest.raises(ValidationException) as exc_info:
        await enqueue_sync_event(db_session, "upsert", "habit_usage", "h1", {"userId": "x"})

    assert exc_info.value.details == {"field": "payload"}
    result = await db_session.execute(select(SyncOutboxModel))
    assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_enqueue_is_rolled_back_with_business_transaction(session_factory) -> None:
    async with session_factory() as session:
        await enqueue_sync_event(session, "upsert", "habit_usage", "h1", HABIT)
        await session.rollback()

    async with session_factory() as session:
        result = await session.execute(select(SyncOutboxModel))
        assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_idempotency_key_makes_second_enqueue_a_noop(db_session) -> None:
    first = await enqueue_sync_event(db_session, "upsert", "habit_usage", "h1", HABIT, idempotency_key="k-1")
    second = await enqueue_sync_event(db_session, "upsert", "habit_usage", "h1", HABIT, idempotency_key="k-1")
    await db_session.commit()

    assert first is not None
    assert second is None
    result = await db_session.execute(select(SyncOutboxModel))
    assert len(result.scalars().all()) == 1


@pytest.mark.asyncio
async def test_entity_seq_increments_per_entity(db_session) -> None:
    repo = OutboxRepository(db_session)
    a1 = await repo.enqueue("upsert", "habit_usage", "h1", HABIT)
    a2 = await repo.enqueue("upsert", "habit_usage", "h1", HABIT)
    b1 = await repo.enqueue("upsert", "habit_usage", "h2", HABIT)
    await db_session.commit()

    assert (await repo.get(a1)).entity_seq == 1
    assert (await repo.get(a2)).entity_seq == 2
    assert (await repo.get(b1)).entity_seq == 1


@pytest.mark.asyncio
async def test_claim_orders_by_priority_then_age(db_session) -> None:
    repo = OutboxRepository(db_session)
    low = await repo.enqueue("upsert", "habit_usage", "h1", HABIT, priority=100)
    high = await repo.enqueue("upsert", "habit_usage", "h2", HABIT, priority=10)
    mid = await repo.enqueue("upsert", "habit_usage", "h3", HABIT, priority=50)
    await db_session.commit()

    events = await repo.claim_batch(limit=10, lease_seconds=60, now=utc_now() + timedelta(seconds=1))
    await db_session.commit()

    assert [e.id for e in events] == [high, mid, low]
    for event_id in (low, high, mid):
        row = await repo.get(event_id)
        assert row.status == "in_flight"
        assert row.locked_until is not None


@pytest.mark.asyncio
async def test_claimed_events_are_not_claimed_again_until_lease_expires(db_session) -> None:
    repo = OutboxRepository(db_session)
    await repo.enqueue("upsert", "habit_usage", "h1", HABIT)
    await db_session.commit()

    now = utc_now() + timedelta(seconds=1)
    assert len(await repo.claim_batch(limit=10, lease_seconds=60, now=now)) == 1
    await db_session.commit()

    assert await repo.claim_batch(limit=10, lease_seconds=60, now=now + timedelta(seconds=30)) == []
    reclaimed = await repo.claim_batch(limit=10, lease_seconds=60, now=now + timedelta(seconds=61))
    assert len(reclaimed) == 1


@pytest.mark.asyncio
async def test_retry_is_not_claimable_before_next_attempt(db_session) -> None:
    repo = OutboxRepository(db_session)
    await repo.enqueue("upsert", "habit_usage", "h1", HABIT)
    await db_session.commit()

    now = utc_now() + timedelta(seconds=1)
    [event] = await repo.claim_batch(limit=10, lease_seconds=60, now=now)
    assert await repo.mark_retry(event, 1, now + timedelta(seconds=30), "timeout") is True
    await db_session.commit()

    assert await repo.claim_batch(limit=10, lease_seconds=60, now=now + timedelta(seconds=10)) == []
    events = await repo.claim_batch(limit=10, lease_seconds=60, now=now + timedelta(seconds=31))
    assert [e.attempt_count for e in events] == [1]


@pytest.mark.asyncio
async def test_claim_respects_limit(db_session) -> None:
    repo = OutboxRepository(db_session)
    for i in range(5):
        await repo.enqueue("upsert", "habit_usage", f"h{i}", HABIT)
    await db_session.commit()

    events = await repo.claim_batch(limit=2, lease_seconds=60, now=utc_now() + timedelta(seconds=1))
    assert len(events) == 2


@pytest.mark.asyncio
async def test_stats_counts_statuses_and_open_dead_letters(db_session) -> None:
    repo = OutboxRepository(db_session)
    await repo.enqueue("upsert", "habit_usage", "h1", HABIT)
    await repo.enqueue("upsert", "habit_usage", "h2", HABIT)
    await db_session.commit()

    events = await repo.claim_batch(limit=1, lease_seconds=60, now=utc_now() + timedelta(seconds=1))
    await repo.move_to_dead_letter(events[0], 1, "422 invalid")
    await db_session.commit()

    stats = await repo.stats(now=utc_now() + timedelta(seconds=5))
    assert stats["pending"] == 1
    assert stats["dead_lettered"] == 1
    assert stats["dead_letter_open"] == 1
    assert stats["in_flight"] == 0
    assert stats["oldest_pending_age_seconds"] >= 5


@pytest.mark.asyncio
async def test_claim_assigns_a_fresh_token_per_claim(db_session) -> None:
    repo = OutboxRepository(db_session)
    await repo.enqueue("upsert", "habit_usage", "h1", HABIT)
    await db_session.commit()

    now = utc_now() + timedelta(seconds=1)
    [first] = await repo.claim_batch(limit=10, lease_seconds=60, now=now)
    [second] = await repo.claim_batch(limit=10, lease_seconds=60, now=now + timedelta(seconds=61))

    assert first.claim_token
    assert second.claim_token
    assert first.claim_token != second.claim_token


class TestExpiredLease:
    """Dos workers con el mismo evento: solo el último claim puede cerrarlo."""

    async def _claim_twice(self, session_factory):
        async with session_factory() as session:
            event_id = await enqueue_sync_event(session, "upsert", "habit_usage", "h1", HABIT)
            await session.commit()

        t0 = utc_now() + timedelta(seconds=1)
        async with session_factory() as session:
            [worker_a] = await OutboxRepository(session).claim_batch(limit=10, lease_seconds=300, now=t0)
            await session.commit()
        async with session_factory() as session:
            [worker_b] = await OutboxRepository(session).claim_batch(
                limit=10, lease_seconds=300, now=t0 + timedelta(seconds=301)
            )
            await session.commit()
        return event_id, worker_a, worker_b

    async def _row(self, session_factory, event_id):
        async with session_factory() as session:
            return await OutboxRepository(session).get(event_id)

    @pytest.mark.asyncio
    async def test_done_event_is_not_reopened_by_stale_retry(self, session_factory) -> None:
        event_id, worker_a, worker_b = await self._claim_twice(session_factory)

        async with session_factory() as session:
            assert await OutboxRepository(session).mark_done(worker_b) is True
            await session.commit()
        async with session_factory() as session:
            reopened = await OutboxRepository(session).mark_retry(
                worker_a, 1, utc_now() + timedelta(seconds=30), "timeout"
            )
            await session.commit()

        assert reopened is False
        row = await self._row(session_factory, event_id)
        assert row.status == "done"
        assert row.attempt_count == 0
        assert row.last_error is None

    @pytest.mark.asyncio
    async def test_stale_done_does_not_override_new_claim(self, session_factory) -> None:
        event_id, worker_a, worker_b = await self._claim_twice(session_factory)

        async with session_factory() as session:
            assert await OutboxRepository(session).mark_done(worker_a) is False
            await session.commit()

        row = await self._row(session_factory, event_id)
        assert row.status == "in_flight"
        assert row.claim_token == worker_b.claim_token

    @pytest.mark.asyncio
    async def test_stale_dead_letter_is_not_copied(self, session_factory) -> None:
        event_id, worker_a, worker_b = await self._claim_twice(session_factory)

        async with session_factory() as session:
            dead_id = await OutboxRepository(session).move_to_dead_letter(worker_a, 1, "422 invalid")
            await session.commit()

        assert dead_id is None
        async with session_factory() as session:
            result = await session.execute(select(SyncDeadLetterModel))
            assert result.scalars().all() == []
        assert (await self._row(session_factory, event_id)).status == "in_flight"

    @pytest.mark.asyncio
    async def test_renew_lease_requires_current_claim(self, session_factory) -> None:
        event_id, worker_a, worker_b = await self._claim_twice(session_factory)

        async with session_factory() as session:
            repo = OutboxRepository(session)
            assert await repo.renew_lease(worker_a, 300) is False
            assert await repo.renew_lease(worker_b, 300) is True
            await session.commit()


class TestEntitySeqUniqueness:

    @pytest.mark.asyncio
    async def test_duplicate_seq_for_same_entity_is_rejected(self, db_session) -> None:
        await OutboxRepository(db_session).enqueue("upsert", "habit_usage", "h1", HABIT)
        await db_session.commit()

        now = utc_now()
        db_session.add(SyncOutboxModel(
            event_type="upsert",
            entity_type="habit_usage",
            entity_id="h1",
            payload=HABIT,
            entity_seq=1,
            next_attempt_at=now,
            created_at=now,
            updated_at=now,
        ))
        with pytest.raises(IntegrityError):
            await db_session.flush()

    @pytest.mark.asyncio
    async def test_reinsert_keeps_seq_of_dead_event(self, db_session) -> None:
        repo = OutboxRepository(db_session)
        await repo.enqueue("upsert", "habit_usage", "h1", HABIT)
        await db_session.commit()

        [event] = await repo.claim_batch(limit=10, lease_seconds=60, now=utc_now() + timedelta(seconds=1))
        dead_id = await repo.move_to_dead_letter(event, 1, "422 invalid")
        await db_session.commit()

        result = await db_session.execute(select(SyncDeadLetterModel).where(SyncDeadLetterModel.id == dead_id))
        dead = DeadLetter.from_model(result.scalar_one())
        replay_id = await repo.reinsert(dead, priority=10, idempotency_key="replay:1")
        await db_session.commit()

        replayed = await repo.get(replay_id)
        assert replayed.entity_seq == 1
        assert replayed.is_replay is True

        # Un enqueue normal posterior sigue numerando sobre el máximo
        next_id = await repo.enqueue("upsert", "habit_usage", "h1", HABIT)
        assert (await repo.get(next_id)).entity_seq == 2
