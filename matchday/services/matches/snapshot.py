"""Client-facing snapshot of a match.

The snapshot is what every mutating use-case returns and what plain reads
return. It is rebuilt from persisted rows each time; nothing is cached
between requests.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.models.domain import Match, MatchParticipant, ParticipantStatus
from matchday.services.matches.errors import MatchNotFound
from matchday.services.matches.rules import ACTIVE_SEAT
from matchday.services.matches.status_view import MatchStatusView, derive_status

# Canonical order of actionsAllowed entries
ACTION_ORDER = (
    "confirm",
    "decline",
    "withdraw",
    "invite",
    "lock",
    "unlock",
    "update",
    "cancel",
    "manage_admins",
)

# Statuses from which a user may (re)confirm
CONFIRMABLE = (
    None,
    ParticipantStatus.INVITED,
    ParticipantStatus.DECLINED,
    ParticipantStatus.WITHDRAWN,
)


class SnapshotModel(BaseModel):
    """Base for camelCase response models."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ParticipantView(SnapshotModel):
    user_id: uuid.UUID
    status: str
    waitlist_position: int | None = None
    is_match_admin: bool = False
    confirmed_at: datetime | None = None


class MatchSnapshot(SnapshotModel):
    id: uuid.UUID
    title: str
    starts_at: datetime
    location: str | None
    capacity: int
    status: str
    match_status: MatchStatusView
    revision: int
    is_locked: bool
    locked_at: datetime | None
    locked_by: uuid.UUID | None
    created_by_id: uuid.UUID
    confirmed_count: int
    participants: list[ParticipantView]
    waitlist: list[ParticipantView]
    my_status: str | None
    actions_allowed: list[str]
    created_at: datetime
    updated_at: datetime

    def to_payload(self) -> dict:
        """JSON-native dict, the form stored for idempotent replays."""
        return self.model_dump(mode="json", by_alias=True)


def compute_actions_allowed(
    *,
    is_canceled: bool,
    is_locked: bool,
    my_status: str | None,
    is_creator: bool,
    is_match_admin: bool,
) -> list[str]:
    """
    Actions the caller may attempt on the match right now.

    A canceled match allows nothing. Withdraw stays available on a locked
    match so a confirmed player can always drop out.
    """
    if is_canceled:
        return []

    can_manage = is_creator or is_match_admin
    allowed: set[str] = set()

    if not is_locked:
        if my_status in CONFIRMABLE:
            allowed.add("confirm")
        if my_status == ParticipantStatus.INVITED:
            allowed.add("decline")
        if can_manage:
            allowed.add("invite")

    if my_status in ACTIVE_SEAT:
        allowed.add("withdraw")

    if can_manage:
        allowed.add("unlock" if is_locked else "lock")

    if is_creator:
        allowed.update(("update", "cancel", "manage_admins"))

    return [action for action in ACTION_ORDER if action in allowed]


async def build_match_snapshot(
    session: AsyncSession,
    match_id: uuid.UUID,
    actor_id: uuid.UUID,
    now: datetime,
) -> MatchSnapshot:
    """
    Assemble the snapshot of a match as seen by actor_id.

    Reads go through populate_existing so the snapshot reflects writes
    already flushed in the current transaction.
    """
    result = await session.execute(
        select(Match)
        .where(Match.id == match_id)
        .execution_options(populate_existing=True)
    )
    match = result.scalar_one_or_none()
    if match is None:
        raise MatchNotFound("Match not found")

    result = await session.execute(
        select(MatchParticipant)
        .where(MatchParticipant.match_id == match_id)
        .order_by(MatchParticipant.created_at, MatchParticipant.id)
        .execution_options(populate_existing=True)
    )
    rows = list(result.scalars().all())

    confirmed_count = sum(1 for p in rows if p.status == ParticipantStatus.CONFIRMED)
    waitlisted = sorted(
        (p for p in rows if p.status == ParticipantStatus.WAITLISTED),
        key=lambda p: (p.waitlist_position or 0, p.id),
    )
    mine = next((p for p in rows if p.user_id == actor_id), None)
    my_status = mine.status if mine else None

    participants = [
        ParticipantView(
            user_id=p.user_id,
            status=p.status,
            waitlist_position=p.waitlist_position,
            is_match_admin=p.is_match_admin,
            confirmed_at=p.confirmed_at,
        )
        for p in rows
        if p.status != ParticipantStatus.WITHDRAWN
    ]
    # Stored positions may have gaps; clients see 1..N
    waitlist = [
        ParticipantView(
            user_id=p.user_id,
            status=p.status,
            waitlist_position=position,
            is_match_admin=p.is_match_admin,
        )
        for position, p in enumerate(waitlisted, start=1)
    ]

    return MatchSnapshot(
        id=match.id,
        title=match.title,
        starts_at=match.starts_at,
        location=match.location,
        capacity=match.capacity,
        status=match.status,
        match_status=derive_status(match.status, match.starts_at, now),
        revision=match.revision,
        is_locked=match.is_locked,
        locked_at=match.locked_at,
        locked_by=match.locked_by,
        created_by_id=match.created_by_id,
        confirmed_count=confirmed_count,
        participants=participants,
        waitlist=waitlist,
        my_status=my_status,
        actions_allowed=compute_actions_allowed(
            is_canceled=match.is_canceled,
            is_locked=match.is_locked,
            my_status=my_status,
            is_creator=match.created_by_id == actor_id,
            is_match_admin=bool(mine and mine.is_match_admin),
        ),
        created_at=match.created_at,
        updated_at=match.updated_at,
    )
