"""Creator and match-admin authorization checks."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.models.domain import Match, MatchParticipant
from matchday.services.matches.errors import Forbidden


def is_creator(match: Match, actor_id: uuid.UUID) -> bool:
    return match.created_by_id == actor_id


async def is_creator_or_match_admin(
    session: AsyncSession, match: Match, actor_id: uuid.UUID
) -> bool:
    """Creator always qualifies; anyone else needs is_match_admin on their row."""
    if is_creator(match, actor_id):
        return True

    result = await session.execute(
        select(MatchParticipant.is_match_admin).where(
            MatchParticipant.match_id == match.id,
            MatchParticipant.user_id == actor_id,
        )
    )
    return result.scalar_one_or_none() is True


def require_creator(match: Match, actor_id: uuid.UUID, action: str) -> None:
    if not is_creator(match, actor_id):
        raise Forbidden(f"Only the match creator can {action}")


async def require_creator_or_admin(
    session: AsyncSession, match: Match, actor_id: uuid.UUID, action: str
) -> None:
    if not await is_creator_or_match_admin(session, match, actor_id):
        raise Forbidden(f"Only the match creator or a match admin can {action}")
