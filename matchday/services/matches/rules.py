"""Guards and participant helpers shared by the match use-cases.

Every helper here expects to run inside a transaction that already holds the
match row lock.
"""

import uuid
from datetime import datetime

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.models.domain import Match, MatchParticipant, ParticipantStatus
from matchday.services.matches.errors import MatchCancelled, MatchLocked, RevisionConflict

logger = structlog.get_logger(__name__)

ACTIVE_SEAT = (ParticipantStatus.CONFIRMED, ParticipantStatus.WAITLISTED)
INACTIVE = (ParticipantStatus.WITHDRAWN, ParticipantStatus.DECLINED)


def ensure_not_canceled(match: Match) -> None:
    if match.is_canceled:
        raise MatchCancelled("Match is cancelled")


def ensure_revision(match: Match, expected_revision: int) -> None:
    """Strict equality against the caller's last-seen revision."""
    if match.revision != expected_revision:
        raise RevisionConflict(
            f"Expected revision {expected_revision}, match is at {match.revision}"
        )


def ensure_not_locked(match: Match) -> None:
    if match.is_locked:
        raise MatchLocked("Match is locked")


def bump_revision(match: Match) -> None:
    match.revision += 1


async def get_participant(
    session: AsyncSession, match_id: uuid.UUID, user_id: uuid.UUID
) -> MatchParticipant | None:
    result = await session.execute(
        select(MatchParticipant)
        .where(
            MatchParticipant.match_id == match_id,
            MatchParticipant.user_id == user_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def count_confirmed(session: AsyncSession, match_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(MatchParticipant)
        .where(
            MatchParticipant.match_id == match_id,
            MatchParticipant.status == ParticipantStatus.CONFIRMED.value,
        )
    )
    return result.scalar_one()


async def next_waitlist_position(session: AsyncSession, match_id: uuid.UUID) -> int:
    """One past the highest waitlist position currently held in this match."""
    result = await session.execute(
        select(func.max(MatchParticipant.waitlist_position)).where(
            MatchParticipant.match_id == match_id,
            MatchParticipant.status == ParticipantStatus.WAITLISTED.value,
        )
    )
    return (result.scalar_one_or_none() or 0) + 1


def mark_confirmed(participant: MatchParticipant, now: datetime) -> None:
    participant.status = ParticipantStatus.CONFIRMED.value
    participant.waitlist_position = None
    participant.confirmed_at = now


async def promote_from_waitlist(
    session: AsyncSession,
    match: Match,
    now: datetime,
    limit: int | None = None,
) -> list[MatchParticipant]:
    """
    Move the head of the waitlist into free confirmed slots, FIFO.

    Promotes at most `limit` participants (all free slots when None) and
    never more than capacity allows.
    """
    free = match.capacity - await count_confirmed(session, match.id)
    if limit is not None:
        free = min(free, limit)
    if free <= 0:
        return []

    result = await session.execute(
        select(MatchParticipant)
        .where(
            MatchParticipant.match_id == match.id,
            MatchParticipant.status == ParticipantStatus.WAITLISTED.value,
        )
        .order_by(MatchParticipant.waitlist_position, MatchParticipant.id)
        .limit(free)
    )
    promoted = list(result.scalars().all())
    for participant in promoted:
        logger.info(
            "waitlist_promoted",
            match_id=str(match.id),
            user_id=str(participant.user_id),
            waitlist_position=participant.waitlist_position,
        )
        mark_confirmed(participant, now)
    return promoted
