"""Pytest configuration and fixtures for Matchday tests."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from matchday.models import Base, User
from matchday.services.matches.service import MatchService

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
async def engine():
    """In-memory SQLite engine with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def service(session_factory, clock):
    return MatchService(session_factory, clock=clock)


@pytest.fixture
def make_user(session_factory):
    """Insert a directory user and return its id."""

    async def _make(username: str | None = None, email: str | None = None) -> uuid.UUID:
        user_id = uuid.uuid4()
        async with session_factory() as session:
            async with session.begin():
                session.add(User(id=user_id, username=username, email=email))
        return user_id

    return _make


@pytest.fixture
def create_match(service, clock):
    """Create a match one day ahead; returns the creator's snapshot."""

    async def _create(
        creator_id: uuid.UUID | None = None,
        capacity: int = 2,
        title: str = "Sunday 5-a-side",
        location: str | None = "Pitch 3",
    ):
        return await service.create_match(
            actor_id=creator_id or uuid.uuid4(),
            title=title,
            starts_at=clock() + timedelta(days=1),
            capacity=capacity,
            location=location,
        )

    return _create


@pytest.fixture
def participant():
    """Find one user's entry in a snapshot's participant list."""

    def _find(snapshot, user_id: uuid.UUID):
        return next((p for p in snapshot.participants if p.user_id == user_id), None)

    return _find
