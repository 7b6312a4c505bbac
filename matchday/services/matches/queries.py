"""Read-only match queries. None of these take the row lock."""

import math
import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.models.domain import Match, MatchParticipant, MatchStatus, ParticipantStatus
from matchday.services.matches.snapshot import MatchSnapshot, SnapshotModel, build_match_snapshot
from matchday.services.matches.status_view import PLAYED_GRACE, MatchStatusView, derive_status


class MatchListView(str, Enum):
    UPCOMING = "upcoming"
    HISTORY = "history"


class MatchListItem(SnapshotModel):
    """Match summary in list response."""

    id: uuid.UUID
    title: str
    starts_at: datetime
    location: str | None
    capacity: int
    revision: int
    is_locked: bool
    created_by_id: uuid.UUID
    match_status: MatchStatusView
    confirmed_count: int
    my_status: str | None
    is_match_admin: bool


class PageInfo(SnapshotModel):
    page: int
    page_size: int
    total: int
    total_pages: int
    has_next: bool


class MatchPage(SnapshotModel):
    """Paginated match list response."""

    items: list[MatchListItem]
    page_info: PageInfo

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


async def get_match(
    session: AsyncSession,
    match_id: uuid.UUID,
    actor_id: uuid.UUID,
    now: datetime,
) -> MatchSnapshot:
    """Plain read of a match snapshot. Raises MatchNotFound."""
    return await build_match_snapshot(session, match_id, actor_id, now)


async def list_matches(
    session: AsyncSession,
    *,
    actor_id: uuid.UUID,
    now: datetime,
    page: int = 1,
    page_size: int = 20,
    view: MatchListView = MatchListView.UPCOMING,
    starts_from: datetime | None = None,
    starts_to: datetime | None = None,
) -> MatchPage:
    """
    List matches the actor created or has a participation row in.

    upcoming: not cancelled and not yet played, soonest first.
    history: cancelled or played, most recent first.
    """
    played_cutoff = now - PLAYED_GRACE
    involved = select(MatchParticipant.match_id).where(MatchParticipant.user_id == actor_id)

    query = select(Match).where(
        or_(Match.created_by_id == actor_id, Match.id.in_(involved))
    )
    if view == MatchListView.UPCOMING:
        query = query.where(
            and_(
                Match.status != MatchStatus.CANCELED.value,
                Match.starts_at > played_cutoff,
            )
        )
        ordering = (Match.starts_at.asc(), Match.id)
    else:
        query = query.where(
            or_(
                Match.status == MatchStatus.CANCELED.value,
                Match.starts_at <= played_cutoff,
            )
        )
        ordering = (Match.starts_at.desc(), Match.id)

    if starts_from is not None:
        query = query.where(Match.starts_at >= starts_from)
    if starts_to is not None:
        query = query.where(Match.starts_at <= starts_to)

    # Count total
    total_result = await session.execute(select(func.count()).select_from(query.subquery()))
    total = total_result.scalar() or 0

    result = await session.execute(
        query.order_by(*ordering).offset((page - 1) * page_size).limit(page_size)
    )
    matches = list(result.scalars().all())
    match_ids = [m.id for m in matches]

    confirmed: dict[uuid.UUID, int] = {}
    mine: dict[uuid.UUID, MatchParticipant] = {}
    if match_ids:
        counts = await session.execute(
            select(MatchParticipant.match_id, func.count())
            .where(
                MatchParticipant.match_id.in_(match_ids),
                MatchParticipant.status == ParticipantStatus.CONFIRMED.value,
            )
            .group_by(MatchParticipant.match_id)
        )
        confirmed = {match_id: count for match_id, count in counts.all()}

        rows = await session.execute(
            select(MatchParticipant).where(
                MatchParticipant.match_id.in_(match_ids),
                MatchParticipant.user_id == actor_id,
            )
        )
        mine = {p.match_id: p for p in rows.scalars().all()}

    items = []
    for m in matches:
        participation = mine.get(m.id)
        items.append(
            MatchListItem(
                id=m.id,
                title=m.title,
                starts_at=m.starts_at,
                location=m.location,
                capacity=m.capacity,
                revision=m.revision,
                is_locked=m.is_locked,
                created_by_id=m.created_by_id,
                match_status=derive_status(m.status, m.starts_at, now),
                confirmed_count=confirmed.get(m.id, 0),
                my_status=participation.status if participation else None,
                is_match_admin=bool(participation and participation.is_match_admin),
            )
        )

    return MatchPage(
        items=items,
        page_info=PageInfo(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=math.ceil(total / page_size) if total else 0,
            has_next=page * page_size < total,
        ),
    )
