"""Unit tests for the idempotency coordinator.

The coordinator is exercised directly with small actions that write a User
row, so tests can tell whether an action's writes were committed.
"""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from matchday.models.domain import IdempotencyRecord, User
from matchday.services.idempotency import (
    IdempotencyCoordinator,
    compute_request_hash,
    purge_expired_records,
)
from matchday.services.matches.errors import IdempotencyKeyReuse

ROUTE = "POST /matches/:id/confirm"


async def count_rows(session_factory, model) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()


class CountingAction:
    """Action that inserts one user per execution and reports the call number."""

    def __init__(self):
        self.calls = 0

    async def __call__(self, session):
        self.calls += 1
        session.add(User(id=uuid.uuid4(), username=f"user{uuid.uuid4().hex[:8]}"))
        await session.flush()
        return {"call": self.calls, "ok": True}


class TestRequestHash:
    """Test compute_request_hash."""

    def test_key_order_does_not_matter(self):
        a = compute_request_hash({"matchId": "m1", "expectedRevision": 3})
        b = compute_request_hash({"expectedRevision": 3, "matchId": "m1"})
        assert a == b

    def test_different_payloads_differ(self):
        a = compute_request_hash({"matchId": "m1", "expectedRevision": 3})
        b = compute_request_hash({"matchId": "m1", "expectedRevision": 4})
        assert a != b

    def test_hex_sha256(self):
        digest = compute_request_hash({})
        assert len(digest) == 64
        int(digest, 16)


class TestIdempotencyCoordinator:
    """Test IdempotencyCoordinator.run."""

    @pytest.fixture
    def coordinator(self, session_factory, clock):
        return IdempotencyCoordinator(session_factory, clock=clock)

    async def run(
        self, coordinator, action, *, key="k1", body=None, route=ROUTE, match_id=None, lock=None
    ):
        return await coordinator.run(
            key=key,
            actor_id=self.actor_id,
            route=route,
            match_id=match_id or self.match_id,
            request_body=body if body is not None else {"expectedRevision": 1},
            action=action,
            lock=lock,
        )

    def setup_method(self):
        self.actor_id = uuid.uuid4()
        self.match_id = uuid.uuid4()

    async def test_first_call_runs_action_and_stores_record(self, coordinator, session_factory):
        action = CountingAction()
        payload = await self.run(coordinator, action)

        assert payload == {"call": 1, "ok": True}
        assert action.calls == 1
        assert await count_rows(session_factory, IdempotencyRecord) == 1
        assert await count_rows(session_factory, User) == 1

    async def test_replay_returns_stored_payload_without_running(self, coordinator, session_factory):
        action = CountingAction()
        first = await self.run(coordinator, action)
        second = await self.run(coordinator, action)

        assert second == first
        assert action.calls == 1
        assert await count_rows(session_factory, User) == 1

    async def test_same_key_different_body_is_rejected(self, coordinator):
        action = CountingAction()
        await self.run(coordinator, action, body={"expectedRevision": 1})

        with pytest.raises(IdempotencyKeyReuse):
            await self.run(coordinator, action, body={"expectedRevision": 2})
        assert action.calls == 1

    async def test_scope_includes_route_and_match(self, coordinator):
        action = CountingAction()
        await self.run(coordinator, action)
        await self.run(coordinator, action, route="POST /matches/:id/withdraw")
        await self.run(coordinator, action, match_id=uuid.uuid4())

        assert action.calls == 3

    async def test_scope_includes_actor(self, coordinator):
        action = CountingAction()
        await self.run(coordinator, action)
        self.actor_id = uuid.uuid4()
        await self.run(coordinator, action)

        assert action.calls == 2

    async def test_expired_record_runs_again(self, coordinator, clock, session_factory):
        action = CountingAction()
        await self.run(coordinator, action)
        clock.advance(hours=49)

        payload = await self.run(coordinator, action)

        assert payload["call"] == 2
        assert await count_rows(session_factory, IdempotencyRecord) == 1

    async def test_record_live_until_ttl(self, coordinator, clock):
        action = CountingAction()
        await self.run(coordinator, action)
        clock.advance(hours=47)

        await self.run(coordinator, action)
        assert action.calls == 1

    async def test_failed_action_stores_nothing(self, coordinator, session_factory):
        async def failing(session):
            session.add(User(id=uuid.uuid4(), username="ghost"))
            await session.flush()
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await self.run(coordinator, failing)

        assert await count_rows(session_factory, IdempotencyRecord) == 0
        assert await count_rows(session_factory, User) == 0

        # The key is still usable
        action = CountingAction()
        await self.run(coordinator, action)
        assert action.calls == 1

    async def test_lock_is_taken_before_lookup(self, coordinator, session_factory):
        """A duplicate that waited on the lock replays the request that held it."""
        action = CountingAction()

        async def original_commits_while_waiting(session):
            await self.run(coordinator, action)

        payload = await self.run(coordinator, action, lock=original_commits_while_waiting)

        assert payload == {"call": 1, "ok": True}
        assert action.calls == 1
        assert await count_rows(session_factory, IdempotencyRecord) == 1

    async def test_lost_race_replays_winner(self, coordinator, session_factory, monkeypatch):
        """
        A concurrent duplicate that did not see the winner's record runs its
        action, fails on the unique scope, rolls back and replays.
        """
        action = CountingAction()
        winner = await self.run(coordinator, action)

        real_load = coordinator._load
        calls = {"n": 0}

        async def blind_first_load(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return await real_load(*args, **kwargs)

        monkeypatch.setattr(coordinator, "_load", blind_first_load)

        payload = await self.run(coordinator, action)

        assert payload == winner
        assert action.calls == 2
        # The loser's user insert was rolled back with its record
        assert await count_rows(session_factory, User) == 1
        assert await count_rows(session_factory, IdempotencyRecord) == 1

    async def test_lost_race_with_different_body_is_reuse(self, coordinator, monkeypatch):
        action = CountingAction()
        await self.run(coordinator, action, body={"expectedRevision": 1})

        real_load = coordinator._load
        calls = {"n": 0}

        async def blind_first_load(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return await real_load(*args, **kwargs)

        monkeypatch.setattr(coordinator, "_load", blind_first_load)

        with pytest.raises(IdempotencyKeyReuse):
            await self.run(coordinator, action, body={"expectedRevision": 2})


class TestPurgeExpiredRecords:
    """Test purge_expired_records."""

    async def test_only_expired_records_are_deleted(self, session_factory, clock):
        now = clock()
        async with session_factory() as session:
            async with session.begin():
                for key, expires_in in (("old", -1), ("older", -10), ("fresh", 5)):
                    session.add(
                        IdempotencyRecord(
                            key=key,
                            actor_id=uuid.uuid4(),
                            route=ROUTE,
                            match_id=uuid.uuid4(),
                            request_hash="0" * 64,
                            response_json={"key": key},
                            created_at=now - timedelta(hours=48),
                            expires_at=now + timedelta(hours=expires_in),
                        )
                    )

        async with session_factory() as session:
            async with session.begin():
                deleted = await purge_expired_records(session, now)

        assert deleted == 2
        async with session_factory() as session:
            result = await session.execute(select(IdempotencyRecord.key))
            assert result.scalars().all() == ["fresh"]
