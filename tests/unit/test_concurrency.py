"""Tests for concurrent writers to the same match.

TestConcurrentWriters runs requests with asyncio.gather against a file-backed
SQLite database with one connection per session, so the transactions really
overlap. SQLite ignores FOR UPDATE; each transaction begins IMMEDIATE
instead, which queues writers on the database write lock the way the match
row lock queues them on PostgreSQL.
"""

import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from matchday.models import Base
from matchday.models.domain import IdempotencyRecord
from matchday.services.matches.errors import RevisionConflict
from matchday.services.matches.locking import with_match_lock
from matchday.services.matches.rules import bump_revision
from matchday.services.matches.service import MatchService


def key() -> str:
    return str(uuid.uuid4())


async def outcome(call) -> str:
    try:
        await call
    except RevisionConflict:
        return "conflict"
    return "ok"


@pytest.fixture
async def file_engine(tmp_path):
    """SQLite file database whose transactions take the write lock on BEGIN."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'matchday.db'}",
        connect_args={"timeout": 30},
        poolclass=NullPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def file_session_factory(file_engine):
    return async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def concurrent_service(file_session_factory, clock):
    return MatchService(file_session_factory, clock=clock)


@pytest.fixture
async def match(concurrent_service, clock):
    return await concurrent_service.create_match(
        actor_id=uuid.uuid4(),
        title="Wednesday 7-a-side",
        starts_at=clock() + timedelta(days=1),
        capacity=3,
    )


class TestConcurrentWriters:
    """Test overlapping requests through MatchService."""

    async def test_same_revision_has_one_winner(self, concurrent_service, match):
        outcomes = await asyncio.gather(
            *(
                outcome(
                    concurrent_service.confirm(
                        match.id, actor_id=uuid.uuid4(), expected_revision=1, idempotency_key=key()
                    )
                )
                for _ in range(5)
            )
        )

        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == 4

        snapshot = await concurrent_service.get_match(match.id, actor_id=uuid.uuid4())
        assert snapshot.revision == 2
        assert snapshot.confirmed_count == 1
        assert len(snapshot.participants) == 1

    async def test_overlapping_retries_replay_the_first_response(
        self, concurrent_service, file_session_factory, match
    ):
        alice = uuid.uuid4()
        k = key()

        results = await asyncio.gather(
            *(
                concurrent_service.confirm(
                    match.id, actor_id=alice, expected_revision=1, idempotency_key=k
                )
                for _ in range(3)
            )
        )

        first = results[0].to_payload()
        assert all(result.to_payload() == first for result in results)
        assert first["revision"] == 2

        async with file_session_factory() as session:
            count = await session.execute(select(func.count()).select_from(IdempotencyRecord))
            assert count.scalar_one() == 1


class TestRevisionGuard:
    """Test that a stale in-memory match cannot overwrite a committed change."""

    async def test_write_behind_a_committed_change_is_conflict(
        self, service, session_factory, create_match
    ):
        match = await create_match()

        async def change_underneath(locked):
            # Another request commits while this one holds a revision 1 copy
            await service.confirm(
                match.id, actor_id=uuid.uuid4(), expected_revision=1, idempotency_key=key()
            )
            bump_revision(locked)
            return locked

        async with session_factory() as session:
            with pytest.raises(RevisionConflict):
                await with_match_lock(session, match.id, change_underneath)

        snapshot = await service.get_match(match.id, actor_id=uuid.uuid4())
        assert snapshot.revision == 2
        assert snapshot.confirmed_count == 1
