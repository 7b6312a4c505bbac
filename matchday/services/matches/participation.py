"""Participation transitions: confirm, decline, withdraw, leave, invite.

Each function runs inside a transaction that already holds the row lock of
`match` (see locking.with_match_lock) and returns the post-transition
snapshot as seen by the actor. Preconditions are checked in a fixed order:
permission, cancellation, revision, lock state, then transition-specific
rules. No-ops return the snapshot without bumping the revision.
"""

import uuid
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.models.domain import Match, MatchParticipant, ParticipantStatus
from matchday.services.matches.errors import (
    AlreadyParticipant,
    CreatorTransferRequired,
    SelfInvite,
    WithdrawRequired,
)
from matchday.services.matches.permissions import is_creator, require_creator_or_admin
from matchday.services.matches.rules import (
    ACTIVE_SEAT,
    INACTIVE,
    bump_revision,
    count_confirmed,
    ensure_not_canceled,
    ensure_not_locked,
    ensure_revision,
    get_participant,
    mark_confirmed,
    next_waitlist_position,
    promote_from_waitlist,
)
from matchday.services.matches.snapshot import MatchSnapshot, build_match_snapshot
from matchday.services.users import UserDirectory

logger = structlog.get_logger(__name__)


async def confirm(
    session: AsyncSession,
    match: Match,
    *,
    actor_id: uuid.UUID,
    expected_revision: int,
    now: datetime,
) -> MatchSnapshot:
    """
    Take a seat: CONFIRMED while there is room, otherwise WAITLISTED at the
    end of the queue. Already CONFIRMED or WAITLISTED is a no-op.
    """
    ensure_not_canceled(match)
    ensure_revision(match, expected_revision)
    ensure_not_locked(match)

    existing = await get_participant(session, match.id, actor_id)
    if existing is not None and existing.status in ACTIVE_SEAT:
        return await build_match_snapshot(session, match.id, actor_id, now)

    if await count_confirmed(session, match.id) < match.capacity:
        status = ParticipantStatus.CONFIRMED.value
        waitlist_position = None
        confirmed_at = now
    else:
        status = ParticipantStatus.WAITLISTED.value
        waitlist_position = await next_waitlist_position(session, match.id)
        confirmed_at = None

    if existing is None:
        await UserDirectory(session).ensure(actor_id)
        session.add(
            MatchParticipant(
                match_id=match.id,
                user_id=actor_id,
                status=status,
                waitlist_position=waitlist_position,
                confirmed_at=confirmed_at,
                created_at=now,
            )
        )
    else:
        existing.status = status
        existing.waitlist_position = waitlist_position
        existing.confirmed_at = confirmed_at

    bump_revision(match)
    logger.info(
        "participation_confirmed",
        match_id=str(match.id),
        actor_id=str(actor_id),
        status=status,
        waitlist_position=waitlist_position,
        revision=match.revision,
    )
    return await build_match_snapshot(session, match.id, actor_id, now)


async def decline(
    session: AsyncSession,
    match: Match,
    *,
    actor_id: uuid.UUID,
    expected_revision: int,
    now: datetime,
) -> MatchSnapshot:
    """Decline an invitation. A seated participant has to withdraw instead."""
    ensure_not_canceled(match)
    ensure_revision(match, expected_revision)
    ensure_not_locked(match)

    existing = await get_participant(session, match.id, actor_id)
    if existing is not None:
        if existing.status == ParticipantStatus.DECLINED:
            return await build_match_snapshot(session, match.id, actor_id, now)
        if existing.status in ACTIVE_SEAT:
            raise WithdrawRequired("Cannot decline while confirmed or waitlisted, withdraw first")
        existing.status = ParticipantStatus.DECLINED.value
        existing.waitlist_position = None
        existing.confirmed_at = None
    else:
        await UserDirectory(session).ensure(actor_id)
        session.add(
            MatchParticipant(
                match_id=match.id,
                user_id=actor_id,
                status=ParticipantStatus.DECLINED.value,
                created_at=now,
            )
        )

    bump_revision(match)
    logger.info(
        "participation_declined",
        match_id=str(match.id),
        actor_id=str(actor_id),
        revision=match.revision,
    )
    return await build_match_snapshot(session, match.id, actor_id, now)


async def withdraw(
    session: AsyncSession,
    match: Match,
    *,
    actor_id: uuid.UUID,
    expected_revision: int,
    now: datetime,
) -> MatchSnapshot:
    """
    Give up a seat, keeping the row as WITHDRAWN.

    Allowed on a locked match. Withdrawing from CONFIRMED promotes the head
    of the waitlist. Without a CONFIRMED/WAITLISTED row this is a no-op.
    """
    ensure_not_canceled(match)
    ensure_revision(match, expected_revision)

    existing = await get_participant(session, match.id, actor_id)
    if existing is None or existing.status not in ACTIVE_SEAT:
        return await build_match_snapshot(session, match.id, actor_id, now)

    was_confirmed = existing.status == ParticipantStatus.CONFIRMED
    existing.status = ParticipantStatus.WITHDRAWN.value
    existing.waitlist_position = None
    existing.confirmed_at = None

    if was_confirmed:
        await promote_from_waitlist(session, match, now, limit=1)

    bump_revision(match)
    logger.info(
        "participation_withdrawn",
        match_id=str(match.id),
        actor_id=str(actor_id),
        was_confirmed=was_confirmed,
        revision=match.revision,
    )
    return await build_match_snapshot(session, match.id, actor_id, now)


async def _transfer_creator(
    session: AsyncSession, match: Match, leaver_id: uuid.UUID, now: datetime
) -> MatchParticipant:
    """Hand the creator role to the longest-standing active match-admin."""
    result = await session.execute(
        select(MatchParticipant)
        .where(
            MatchParticipant.match_id == match.id,
            MatchParticipant.is_match_admin.is_(True),
            MatchParticipant.user_id != leaver_id,
            MatchParticipant.status.not_in([s.value for s in INACTIVE]),
        )
        .order_by(MatchParticipant.admin_granted_at, MatchParticipant.id)
        .limit(1)
    )
    successor = result.scalar_one_or_none()
    if successor is None:
        raise CreatorTransferRequired("Promote a match admin before leaving as creator")

    match.created_by_id = successor.user_id
    if successor.status != ParticipantStatus.CONFIRMED:
        mark_confirmed(successor, now)

    logger.info(
        "creator_transferred",
        match_id=str(match.id),
        from_user_id=str(leaver_id),
        to_user_id=str(successor.user_id),
    )
    return successor


async def leave(
    session: AsyncSession,
    match: Match,
    *,
    actor_id: uuid.UUID,
    expected_revision: int,
    now: datetime,
) -> MatchSnapshot:
    """
    Leave the match entirely, deleting the participation row.

    A leaving creator first hands the role to the earliest-promoted active
    match-admin; without one the request fails and nothing changes.
    """
    ensure_not_canceled(match)
    ensure_revision(match, expected_revision)

    existing = await get_participant(session, match.id, actor_id)
    if existing is None:
        return await build_match_snapshot(session, match.id, actor_id, now)

    if is_creator(match, actor_id):
        await _transfer_creator(session, match, actor_id, now)

    was_confirmed = existing.status == ParticipantStatus.CONFIRMED
    await session.delete(existing)
    await session.flush()

    if was_confirmed:
        await promote_from_waitlist(session, match, now, limit=1)

    bump_revision(match)
    logger.info(
        "participation_left",
        match_id=str(match.id),
        actor_id=str(actor_id),
        was_confirmed=was_confirmed,
        revision=match.revision,
    )
    return await build_match_snapshot(session, match.id, actor_id, now)


async def invite(
    session: AsyncSession,
    match: Match,
    *,
    actor_id: uuid.UUID,
    target_user_id: uuid.UUID,
    expected_revision: int,
    now: datetime,
) -> MatchSnapshot:
    """
    Invite a user. Capacity is not checked here, only on confirm.

    Re-inviting an INVITED user is a no-op; any other existing row is a
    conflict.
    """
    if target_user_id == actor_id:
        raise SelfInvite("Cannot invite yourself")

    await require_creator_or_admin(session, match, actor_id, "invite")
    ensure_not_canceled(match)
    ensure_revision(match, expected_revision)
    ensure_not_locked(match)

    existing = await get_participant(session, match.id, target_user_id)
    if existing is not None:
        if existing.status == ParticipantStatus.INVITED:
            return await build_match_snapshot(session, match.id, actor_id, now)
        raise AlreadyParticipant(f"User is already a participant ({existing.status})")

    session.add(
        MatchParticipant(
            match_id=match.id,
            user_id=target_user_id,
            status=ParticipantStatus.INVITED.value,
            created_at=now,
        )
    )

    bump_revision(match)
    logger.info(
        "participant_invited",
        match_id=str(match.id),
        actor_id=str(actor_id),
        target_user_id=str(target_user_id),
        revision=match.revision,
    )
    return await build_match_snapshot(session, match.id, actor_id, now)
