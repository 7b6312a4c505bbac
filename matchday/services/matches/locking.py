"""Transactions and the per-match row lock.

Every mutating use-case runs inside transaction() and takes the match row
lock before its first read of match state. Concurrent writers to the same
match then queue on the lock instead of racing on read-modify-write; writers
to different matches never contend. Plain reads never lock.

The row lock is backed by the revision column: every UPDATE of a match is
conditional on the revision it was loaded at, so a writer that slipped past
the lock (SQLite has no FOR UPDATE) fails with RevisionConflict instead of
overwriting the other write.
"""

import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from matchday.models.domain import Match
from matchday.services.matches.errors import MatchNotFound, RevisionConflict

T = TypeVar("T")


@asynccontextmanager
async def transaction(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Unit of work: commit on normal exit, roll back on any error."""
    async with session_factory() as session:
        async with session.begin():
            yield session


async def lock_match_row(session: AsyncSession, match_id: uuid.UUID) -> Match | None:
    """
    Acquire an exclusive row lock on a match and return the fresh row.

    Issues SELECT ... FOR UPDATE inside the caller's transaction and blocks
    until the lock is held. populate_existing makes sure a row already in the
    identity map is overwritten with the committed state seen under the lock.

    Returns None when the match does not exist.
    """
    result = await session.execute(
        select(Match)
        .where(Match.id == match_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def with_match_lock(
    session: AsyncSession,
    match_id: uuid.UUID,
    fn: Callable[[Match], Awaitable[T]],
) -> T:
    """
    Lock the match row, then run fn with the locked match.

    fn's writes are flushed before returning.

    Raises:
        MatchNotFound: No match with this id
        RevisionConflict: Another transaction changed the match first
    """
    match = await lock_match_row(session, match_id)
    if match is None:
        raise MatchNotFound("Match not found")
    try:
        result = await fn(match)
        await session.flush()
    except StaleDataError as e:
        raise RevisionConflict("Match was changed by a concurrent request") from e
    return result
