"""Match administration: create, update, lock, unlock, cancel, admin rights.

Apart from create_match, every function expects the match row lock to be
held by the caller's transaction and returns the actor's snapshot.
"""

import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.models.domain import Match, MatchParticipant, MatchStatus, ParticipantStatus
from matchday.services.matches.errors import (
    CannotDemoteCreator,
    NotAParticipant,
    ValidationFailed,
)
from matchday.services.matches.permissions import require_creator, require_creator_or_admin
from matchday.services.matches.rules import (
    INACTIVE,
    bump_revision,
    ensure_not_canceled,
    ensure_not_locked,
    ensure_revision,
    get_participant,
    next_waitlist_position,
    promote_from_waitlist,
)
from matchday.services.matches.snapshot import MatchSnapshot, build_match_snapshot
from matchday.services.users import UserDirectory

logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = ("title", "starts_at", "location", "capacity")

# Changing either of these sends confirmed players back to INVITED
MAJOR_FIELDS = ("starts_at", "location")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _validate_title(title: Any) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationFailed("title must not be empty")
    return title.strip()


def _validate_capacity(capacity: Any) -> int:
    if not isinstance(capacity, int) or isinstance(capacity, bool) or capacity <= 0:
        raise ValidationFailed("capacity must be a positive integer")
    return capacity


async def create_match(
    session: AsyncSession,
    *,
    actor_id: uuid.UUID,
    title: str,
    starts_at: datetime,
    capacity: int,
    location: str | None,
    now: datetime,
    min_start_lead: timedelta = timedelta(seconds=60),
) -> MatchSnapshot:
    """
    Create a match owned by actor_id at revision 1.

    The creator gets no participation row; they confirm like anyone else.

    Raises:
        ValidationFailed: Empty title, non-positive capacity or a start time
            less than min_start_lead in the future
    """
    title = _validate_title(title)
    capacity = _validate_capacity(capacity)
    starts_at = _as_utc(starts_at)
    if starts_at < now + min_start_lead:
        raise ValidationFailed(
            f"startsAt must be at least {int(min_start_lead.total_seconds())} seconds in the future"
        )

    await UserDirectory(session).ensure(actor_id)
    match = Match(
        title=title,
        starts_at=starts_at,
        capacity=capacity,
        location=location,
        status=MatchStatus.SCHEDULED.value,
        revision=1,
        is_locked=False,
        created_by_id=actor_id,
        created_at=now,
        updated_at=now,
    )
    session.add(match)
    await session.flush()

    logger.info(
        "match_created",
        match_id=str(match.id),
        actor_id=str(actor_id),
        capacity=capacity,
        starts_at=starts_at.isoformat(),
    )
    return await build_match_snapshot(session, match.id, actor_id, now)


async def _reset_confirmations(session: AsyncSession, match: Match) -> int:
    """Send every confirmed non-creator back to INVITED."""
    result = await session.execute(
        select(MatchParticipant).where(
            MatchParticipant.match_id == match.id,
            MatchParticipant.status == ParticipantStatus.CONFIRMED.value,
            MatchParticipant.user_id != match.created_by_id,
        )
    )
    reset = list(result.scalars().all())
    for participant in reset:
        participant.status = ParticipantStatus.INVITED.value
        participant.confirmed_at = None
    return len(reset)


async def _waitlist_overflow(session: AsyncSession, match: Match) -> int:
    """
    Move confirmed participants beyond capacity to the end of the waitlist.

    The earliest confirmations keep their seats; the rest are queued in
    their confirmation order.
    """
    result = await session.execute(
        select(MatchParticipant)
        .where(
            MatchParticipant.match_id == match.id,
            MatchParticipant.status == ParticipantStatus.CONFIRMED.value,
        )
        .order_by(MatchParticipant.confirmed_at, MatchParticipant.id)
    )
    overflow = list(result.scalars().all())[match.capacity:]
    if not overflow:
        return 0

    position = await next_waitlist_position(session, match.id)
    for participant in overflow:
        participant.status = ParticipantStatus.WAITLISTED.value
        participant.waitlist_position = position
        participant.confirmed_at = None
        position += 1
    return len(overflow)


async def update_match(
    session: AsyncSession,
    match: Match,
    *,
    actor_id: uuid.UUID,
    expected_revision: int,
    changes: Mapping[str, Any],
    now: datetime,
) -> MatchSnapshot:
    """
    Apply a partial update of title, starts_at, location and capacity.

    Only keys present in changes are considered, and only those whose value
    actually differs count. With no effective change this is a no-op.

    A new start time or location resets confirmations. Otherwise a lower
    capacity waitlists the overflow and a higher one promotes from the
    waitlist.
    """
    require_creator(match, actor_id, "update the match")
    ensure_not_canceled(match)
    ensure_revision(match, expected_revision)
    ensure_not_locked(match)

    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationFailed(f"Cannot update {', '.join(sorted(unknown))}")

    values = dict(changes)
    if "title" in values:
        values["title"] = _validate_title(values["title"])
    if "capacity" in values:
        values["capacity"] = _validate_capacity(values["capacity"])
    if "starts_at" in values:
        if values["starts_at"] is None:
            raise ValidationFailed("startsAt must not be null")
        values["starts_at"] = _as_utc(values["starts_at"])

    diff = {field: value for field, value in values.items() if getattr(match, field) != value}
    if not diff:
        return await build_match_snapshot(session, match.id, actor_id, now)

    old_capacity = match.capacity
    for field, value in diff.items():
        setattr(match, field, value)

    major = any(field in diff for field in MAJOR_FIELDS)
    reset = waitlisted = promoted = 0
    if major:
        reset = await _reset_confirmations(session, match)
    elif "capacity" in diff:
        if match.capacity < old_capacity:
            waitlisted = await _waitlist_overflow(session, match)
        else:
            promoted = len(await promote_from_waitlist(session, match, now))

    bump_revision(match)
    logger.info(
        "match_updated",
        match_id=str(match.id),
        actor_id=str(actor_id),
        fields=sorted(diff),
        major_change=major,
        reset_confirmations=reset,
        waitlisted=waitlisted,
        promoted=promoted,
        revision=match.revision,
    )
    return await build_match_snapshot(session, match.id, actor_id, now)


async def lock_match(
    session: AsyncSession,
    match: Match,
    *,
    actor_id: uuid.UUID,
    expected_revision: int,
    now: datetime,
) -> MatchSnapshot:
    """Freeze the roster. Locking an already locked match is a no-op."""
    await require_creator_or_admin(session, match, actor_id, "lock the match")
    ensure_not_canceled(match)
    ensure_revision(match, expected_revision)

    if match.is_locked:
        return await build_match_snapshot(session, match.id, actor_id, now)

    match.is_locked = True
    match.locked_at = now
    match.locked_by = actor_id
    bump_revision(match)
    logger.info("match_locked", match_id=str(match.id), actor_id=str(actor_id), revision=match.revision)
    return await build_match_snapshot(session, match.id, actor_id, now)


async def unlock_match(
    session: AsyncSession,
    match: Match,
    *,
    actor_id: uuid.UUID,
    expected_revision: int,
    now: datetime,
) -> MatchSnapshot:
    await require_creator_or_admin(session, match, actor_id, "unlock the match")
    ensure_not_canceled(match)
    ensure_revision(match, expected_revision)

    if not match.is_locked:
        return await build_match_snapshot(session, match.id, actor_id, now)

    match.is_locked = False
    match.locked_at = None
    match.locked_by = None
    bump_revision(match)
    logger.info("match_unlocked", match_id=str(match.id), actor_id=str(actor_id), revision=match.revision)
    return await build_match_snapshot(session, match.id, actor_id, now)


async def cancel_match(
    session: AsyncSession,
    match: Match,
    *,
    actor_id: uuid.UUID,
    expected_revision: int,
    now: datetime,
) -> MatchSnapshot:
    """
    Cancel the match. Terminal: no transition is allowed afterwards.

    Cancelling twice is a no-op and does not look at the revision.
    """
    require_creator(match, actor_id, "cancel the match")
    if match.is_canceled:
        return await build_match_snapshot(session, match.id, actor_id, now)
    ensure_revision(match, expected_revision)

    match.status = MatchStatus.CANCELED.value
    bump_revision(match)
    logger.info("match_cancelled", match_id=str(match.id), actor_id=str(actor_id), revision=match.revision)
    return await build_match_snapshot(session, match.id, actor_id, now)


async def _active_participant(
    session: AsyncSession, match: Match, user_id: uuid.UUID
) -> MatchParticipant:
    participant = await get_participant(session, match.id, user_id)
    if participant is None or participant.status in INACTIVE:
        raise NotAParticipant("Target user is not an active participant")
    return participant


async def promote_admin(
    session: AsyncSession,
    match: Match,
    *,
    actor_id: uuid.UUID,
    target_user_id: uuid.UUID,
    expected_revision: int,
    now: datetime,
) -> MatchSnapshot:
    """Grant match-admin rights. The creator already has them implicitly."""
    require_creator(match, actor_id, "manage match admins")
    ensure_not_canceled(match)
    ensure_revision(match, expected_revision)

    if target_user_id == match.created_by_id:
        return await build_match_snapshot(session, match.id, actor_id, now)

    participant = await _active_participant(session, match, target_user_id)
    if participant.is_match_admin:
        return await build_match_snapshot(session, match.id, actor_id, now)

    participant.is_match_admin = True
    participant.admin_granted_at = now
    bump_revision(match)
    logger.info(
        "match_admin_promoted",
        match_id=str(match.id),
        actor_id=str(actor_id),
        target_user_id=str(target_user_id),
        revision=match.revision,
    )
    return await build_match_snapshot(session, match.id, actor_id, now)


async def demote_admin(
    session: AsyncSession,
    match: Match,
    *,
    actor_id: uuid.UUID,
    target_user_id: uuid.UUID,
    expected_revision: int,
    now: datetime,
) -> MatchSnapshot:
    require_creator(match, actor_id, "manage match admins")
    ensure_not_canceled(match)
    ensure_revision(match, expected_revision)

    if target_user_id == match.created_by_id:
        raise CannotDemoteCreator("The creator cannot be demoted")

    participant = await _active_participant(session, match, target_user_id)
    if not participant.is_match_admin:
        return await build_match_snapshot(session, match.id, actor_id, now)

    participant.is_match_admin = False
    participant.admin_granted_at = None
    bump_revision(match)
    logger.info(
        "match_admin_demoted",
        match_id=str(match.id),
        actor_id=str(actor_id),
        target_user_id=str(target_user_id),
        revision=match.revision,
    )
    return await build_match_snapshot(session, match.id, actor_id, now)
