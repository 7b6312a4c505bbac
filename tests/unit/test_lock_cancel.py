"""Tests for locking, unlocking and cancelling a match."""

import uuid

import pytest

from matchday.services.matches.errors import (
    Forbidden,
    MatchCancelled,
    MatchNotFound,
    RevisionConflict,
)
from matchday.services.matches.status_view import MatchStatusView


def key() -> str:
    return str(uuid.uuid4())


class TestLock:
    """Test lock and unlock."""

    async def test_lock_and_unlock(self, service, create_match, clock):
        match = await create_match()
        creator = match.created_by_id

        locked = await service.lock(match.id, actor_id=creator, expected_revision=1)
        assert locked.revision == 2
        assert locked.is_locked is True
        assert locked.locked_by == creator
        assert locked.locked_at == clock()

        unlocked = await service.unlock(match.id, actor_id=creator, expected_revision=2)
        assert unlocked.revision == 3
        assert unlocked.is_locked is False
        assert unlocked.locked_by is None
        assert unlocked.locked_at is None

    async def test_lock_twice_is_noop(self, service, create_match):
        match = await create_match()
        await service.lock(match.id, actor_id=match.created_by_id, expected_revision=1)

        snapshot = await service.lock(match.id, actor_id=match.created_by_id, expected_revision=2)
        assert snapshot.revision == 2

    async def test_unlock_unlocked_is_noop(self, service, create_match):
        match = await create_match()

        snapshot = await service.unlock(match.id, actor_id=match.created_by_id, expected_revision=1)
        assert snapshot.revision == 1

    async def test_participant_cannot_lock(self, service, create_match):
        match = await create_match()
        alice = uuid.uuid4()
        await service.confirm(match.id, actor_id=alice, expected_revision=1, idempotency_key=key())

        with pytest.raises(Forbidden):
            await service.lock(match.id, actor_id=alice, expected_revision=2)

    async def test_permission_checked_before_revision(self, service, create_match):
        match = await create_match()

        with pytest.raises(Forbidden):
            await service.lock(match.id, actor_id=uuid.uuid4(), expected_revision=99)

    async def test_stale_revision(self, service, create_match):
        match = await create_match()

        with pytest.raises(RevisionConflict):
            await service.lock(match.id, actor_id=match.created_by_id, expected_revision=2)

    async def test_unknown_match(self, service):
        with pytest.raises(MatchNotFound):
            await service.lock(uuid.uuid4(), actor_id=uuid.uuid4(), expected_revision=1)


class TestCancel:
    """Test cancelling."""

    async def test_cancel(self, service, create_match):
        match = await create_match()
        alice = uuid.uuid4()
        await service.confirm(match.id, actor_id=alice, expected_revision=1, idempotency_key=key())

        snapshot = await service.cancel(
            match.id, actor_id=match.created_by_id, expected_revision=2, idempotency_key=key()
        )

        assert snapshot.revision == 3
        assert snapshot.status == "canceled"
        assert snapshot.match_status == MatchStatusView.CANCELLED
        assert snapshot.actions_allowed == []

        alice_view = await service.get_match(match.id, actor_id=alice)
        assert alice_view.actions_allowed == []

    async def test_cancel_twice_is_noop_even_with_stale_revision(self, service, create_match):
        match = await create_match()
        await service.cancel(match.id, actor_id=match.created_by_id, expected_revision=1, idempotency_key=key())

        snapshot = await service.cancel(
            match.id, actor_id=match.created_by_id, expected_revision=1, idempotency_key=key()
        )
        assert snapshot.revision == 2

    async def test_only_creator_cancels(self, service, create_match):
        match = await create_match()

        with pytest.raises(Forbidden):
            await service.cancel(match.id, actor_id=uuid.uuid4(), expected_revision=1, idempotency_key=key())

    async def test_cancelled_match_is_terminal(self, service, create_match):
        match = await create_match()
        creator = match.created_by_id
        await service.cancel(match.id, actor_id=creator, expected_revision=1, idempotency_key=key())

        with pytest.raises(MatchCancelled):
            await service.lock(match.id, actor_id=creator, expected_revision=2)
        with pytest.raises(MatchCancelled):
            await service.update(match.id, actor_id=creator, expected_revision=2, changes={"title": "Back on"})
        with pytest.raises(MatchCancelled):
            await service.withdraw(match.id, actor_id=creator, expected_revision=2, idempotency_key=key())
