"""Tests for match reads and listing."""

import uuid
from datetime import timedelta

import pytest

from matchday.models.domain import ParticipantStatus
from matchday.services.matches.errors import MatchNotFound
from matchday.services.matches.queries import MatchListView
from matchday.services.matches.status_view import MatchStatusView


def key() -> str:
    return str(uuid.uuid4())


class TestGetMatch:
    """Test MatchService.get_match."""

    async def test_unknown_match(self, service):
        with pytest.raises(MatchNotFound):
            await service.get_match(uuid.uuid4(), actor_id=uuid.uuid4())

    async def test_snapshot_is_actor_relative(self, service, create_match):
        match = await create_match()
        alice = uuid.uuid4()
        await service.confirm(match.id, actor_id=alice, expected_revision=1, idempotency_key=key())

        alice_view = await service.get_match(match.id, actor_id=alice)
        stranger_view = await service.get_match(match.id, actor_id=uuid.uuid4())

        assert alice_view.my_status == ParticipantStatus.CONFIRMED
        assert stranger_view.my_status is None
        assert alice_view.revision == stranger_view.revision == 2

    async def test_played_after_an_hour(self, service, create_match, clock):
        match = await create_match()
        clock.advance(days=1, hours=1)

        snapshot = await service.get_match(match.id, actor_id=match.created_by_id)
        assert snapshot.match_status == MatchStatusView.PLAYED


@pytest.fixture
async def matches(service, clock):
    """
    me: created a (+1d), b (+2d) and e (+5d, cancelled); confirmed in c (+1d1h).
    d belongs to someone else entirely.
    """
    me, other = uuid.uuid4(), uuid.uuid4()
    now = clock()

    async def create(actor, offset, title):
        return await service.create_match(
            actor_id=actor, title=title, starts_at=now + offset, capacity=4
        )

    a = await create(me, timedelta(days=1), "a")
    b = await create(me, timedelta(days=2), "b")
    c = await create(other, timedelta(days=1, hours=1), "c")
    d = await create(other, timedelta(days=1), "d")
    e = await create(me, timedelta(days=5), "e")

    await service.confirm(c.id, actor_id=me, expected_revision=1, idempotency_key=key())
    await service.cancel(e.id, actor_id=me, expected_revision=1, idempotency_key=key())
    return {"me": me, "a": a, "b": b, "c": c, "d": d, "e": e}


class TestListMatches:
    """Test MatchService.list_matches."""

    async def test_upcoming(self, service, matches):
        page = await service.list_matches(actor_id=matches["me"])

        assert [item.title for item in page.items] == ["a", "c", "b"]
        assert page.page_info.total == 3
        assert page.page_info.has_next is False

        c_item = page.items[1]
        assert c_item.my_status == ParticipantStatus.CONFIRMED
        assert c_item.confirmed_count == 1
        assert c_item.is_match_admin is False
        assert page.items[0].my_status is None

    async def test_history(self, service, matches):
        page = await service.list_matches(actor_id=matches["me"], view=MatchListView.HISTORY)

        assert [item.title for item in page.items] == ["e"]
        assert page.items[0].match_status == MatchStatusView.CANCELLED

    async def test_played_matches_move_to_history(self, service, matches, clock):
        clock.advance(days=3)

        upcoming = await service.list_matches(actor_id=matches["me"])
        history = await service.list_matches(actor_id=matches["me"], view=MatchListView.HISTORY)

        assert upcoming.items == []
        assert [item.title for item in history.items] == ["e", "b", "c", "a"]
        assert history.items[1].match_status == MatchStatusView.PLAYED

    async def test_pagination(self, service, matches, clock):
        clock.advance(days=3)

        page = await service.list_matches(
            actor_id=matches["me"], view=MatchListView.HISTORY, page=2, page_size=3
        )

        assert [item.title for item in page.items] == ["a"]
        assert page.page_info.total == 4
        assert page.page_info.total_pages == 2
        assert page.page_info.has_next is False

    async def test_date_range(self, service, matches, clock):
        page = await service.list_matches(
            actor_id=matches["me"],
            starts_from=clock() + timedelta(days=1, minutes=30),
            starts_to=clock() + timedelta(days=3),
        )
        assert [item.title for item in page.items] == ["c", "b"]

    async def test_uninvolved_user_sees_nothing(self, service, matches):
        page = await service.list_matches(actor_id=uuid.uuid4())
        assert page.items == []
        assert page.page_info.total == 0
