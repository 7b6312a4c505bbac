"""Match service: transaction, row lock and idempotency wiring.

Every mutating call runs in its own transaction and takes the match row lock
before reading match state. Participation actions and cancel are keyed: they
go through the IdempotencyCoordinator so a retried request replays the first
response instead of applying twice. The row lock is taken before the stored
response is looked up, so a retry racing the original request still replays.
Lock, unlock, update and admin changes are protected by the revision check
alone.
"""

import uuid
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timedelta
from functools import partial
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.config import Settings, get_settings
from matchday.models.base import utc_now
from matchday.services.idempotency import IdempotencyCoordinator
from matchday.services.matches import administration, participation, queries
from matchday.services.matches.errors import IdempotencyKeyRequired, SelfInvite
from matchday.services.matches.locking import lock_match_row, transaction, with_match_lock
from matchday.services.matches.snapshot import MatchSnapshot
from matchday.services.users import UserDirectory, parse_user_reference

Transition = Callable[..., Awaitable[MatchSnapshot]]


class MatchService:
    """
    Entry point for all match use-cases.

    Usage:
        service = MatchService(async_session_factory)
        snapshot = await service.confirm(
            match_id, actor_id=user_id, expected_revision=3, idempotency_key=key
        )
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        coordinator: IdempotencyCoordinator | None = None,
        clock: Callable[[], datetime] = utc_now,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.settings = settings or get_settings()
        self.coordinator = coordinator or IdempotencyCoordinator(
            session_factory, ttl=self.settings.idempotency_ttl, clock=clock
        )

        rules = self.settings.match_rules()
        self.min_start_lead = timedelta(seconds=rules["min_start_lead_seconds"])
        self.default_page_size = rules["default_page_size"]
        self.max_page_size = rules["max_page_size"]

    async def _locked(
        self, match_id: uuid.UUID, transition: Transition, **kwargs: Any
    ) -> MatchSnapshot:
        """Run an un-keyed transition under the match row lock."""
        now = self.clock()
        async with transaction(self.session_factory) as session:
            return await with_match_lock(
                session, match_id, partial(transition, session, now=now, **kwargs)
            )

    async def _keyed(
        self,
        route: str,
        match_id: uuid.UUID,
        *,
        actor_id: uuid.UUID,
        expected_revision: int,
        idempotency_key: str | None,
        transition: Transition,
        extra_body: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> MatchSnapshot:
        """Run a transition under the match row lock, at most once per key."""
        if not idempotency_key:
            raise IdempotencyKeyRequired("Idempotency-Key header is required")

        now = self.clock()
        request_body = {"matchId": str(match_id), "expectedRevision": expected_revision}
        request_body.update(extra_body or {})

        async def action(session: AsyncSession) -> MatchSnapshot:
            return await with_match_lock(
                session,
                match_id,
                partial(
                    transition,
                    session,
                    actor_id=actor_id,
                    expected_revision=expected_revision,
                    now=now,
                    **kwargs,
                ),
            )

        payload = await self.coordinator.run(
            key=idempotency_key,
            actor_id=actor_id,
            route=route,
            match_id=match_id,
            request_body=request_body,
            action=action,
            lock=partial(lock_match_row, match_id=match_id),
        )
        return MatchSnapshot.model_validate(payload)

    # Participation (keyed)

    async def confirm(
        self,
        match_id: uuid.UUID,
        *,
        actor_id: uuid.UUID,
        expected_revision: int,
        idempotency_key: str | None,
    ) -> MatchSnapshot:
        return await self._keyed(
            "POST /matches/:id/confirm",
            match_id,
            actor_id=actor_id,
            expected_revision=expected_revision,
            idempotency_key=idempotency_key,
            transition=participation.confirm,
        )

    async def decline(
        self,
        match_id: uuid.UUID,
        *,
        actor_id: uuid.UUID,
        expected_revision: int,
        idempotency_key: str | None,
    ) -> MatchSnapshot:
        return await self._keyed(
            "POST /matches/:id/decline",
            match_id,
            actor_id=actor_id,
            expected_revision=expected_revision,
            idempotency_key=idempotency_key,
            transition=participation.decline,
        )

    async def withdraw(
        self,
        match_id: uuid.UUID,
        *,
        actor_id: uuid.UUID,
        expected_revision: int,
        idempotency_key: str | None,
    ) -> MatchSnapshot:
        return await self._keyed(
            "POST /matches/:id/withdraw",
            match_id,
            actor_id=actor_id,
            expected_revision=expected_revision,
            idempotency_key=idempotency_key,
            transition=participation.withdraw,
        )

    async def leave(
        self,
        match_id: uuid.UUID,
        *,
        actor_id: uuid.UUID,
        expected_revision: int,
        idempotency_key: str | None,
    ) -> MatchSnapshot:
        return await self._keyed(
            "POST /matches/:id/leave",
            match_id,
            actor_id=actor_id,
            expected_revision=expected_revision,
            idempotency_key=idempotency_key,
            transition=participation.leave,
        )

    async def invite(
        self,
        match_id: uuid.UUID,
        *,
        actor_id: uuid.UUID,
        expected_revision: int,
        idempotency_key: str | None,
        user_id: uuid.UUID | str | None = None,
        identifier: str | None = None,
    ) -> MatchSnapshot:
        """
        Invite a user by id or by username/email identifier.

        The target is resolved to a user id before the idempotency check, so
        the stored request hash always covers the resolved id.
        """
        if not idempotency_key:
            raise IdempotencyKeyRequired("Idempotency-Key header is required")

        reference = parse_user_reference(user_id=user_id, identifier=identifier)
        async with self.session_factory() as session:
            target_user_id = await UserDirectory(session).resolve(reference)
        if target_user_id == actor_id:
            raise SelfInvite("Cannot invite yourself")

        return await self._keyed(
            "POST /matches/:id/invite",
            match_id,
            actor_id=actor_id,
            expected_revision=expected_revision,
            idempotency_key=idempotency_key,
            transition=participation.invite,
            extra_body={"targetUserId": str(target_user_id)},
            target_user_id=target_user_id,
        )

    # Administration

    async def cancel(
        self,
        match_id: uuid.UUID,
        *,
        actor_id: uuid.UUID,
        expected_revision: int,
        idempotency_key: str | None,
    ) -> MatchSnapshot:
        return await self._keyed(
            "POST /matches/:id/cancel",
            match_id,
            actor_id=actor_id,
            expected_revision=expected_revision,
            idempotency_key=idempotency_key,
            transition=administration.cancel_match,
        )

    async def lock(
        self, match_id: uuid.UUID, *, actor_id: uuid.UUID, expected_revision: int
    ) -> MatchSnapshot:
        return await self._locked(
            match_id,
            administration.lock_match,
            actor_id=actor_id,
            expected_revision=expected_revision,
        )

    async def unlock(
        self, match_id: uuid.UUID, *, actor_id: uuid.UUID, expected_revision: int
    ) -> MatchSnapshot:
        return await self._locked(
            match_id,
            administration.unlock_match,
            actor_id=actor_id,
            expected_revision=expected_revision,
        )

    async def update(
        self,
        match_id: uuid.UUID,
        *,
        actor_id: uuid.UUID,
        expected_revision: int,
        changes: Mapping[str, Any],
    ) -> MatchSnapshot:
        return await self._locked(
            match_id,
            administration.update_match,
            actor_id=actor_id,
            expected_revision=expected_revision,
            changes=changes,
        )

    async def promote_admin(
        self,
        match_id: uuid.UUID,
        *,
        actor_id: uuid.UUID,
        target_user_id: uuid.UUID,
        expected_revision: int,
    ) -> MatchSnapshot:
        return await self._locked(
            match_id,
            administration.promote_admin,
            actor_id=actor_id,
            target_user_id=target_user_id,
            expected_revision=expected_revision,
        )

    async def demote_admin(
        self,
        match_id: uuid.UUID,
        *,
        actor_id: uuid.UUID,
        target_user_id: uuid.UUID,
        expected_revision: int,
    ) -> MatchSnapshot:
        return await self._locked(
            match_id,
            administration.demote_admin,
            actor_id=actor_id,
            target_user_id=target_user_id,
            expected_revision=expected_revision,
        )

    async def create_match(
        self,
        *,
        actor_id: uuid.UUID,
        title: str,
        starts_at: datetime,
        capacity: int,
        location: str | None = None,
    ) -> MatchSnapshot:
        async with transaction(self.session_factory) as session:
            return await administration.create_match(
                session,
                actor_id=actor_id,
                title=title,
                starts_at=starts_at,
                capacity=capacity,
                location=location,
                now=self.clock(),
                min_start_lead=self.min_start_lead,
            )

    # Reads

    async def get_match(self, match_id: uuid.UUID, *, actor_id: uuid.UUID) -> MatchSnapshot:
        async with self.session_factory() as session:
            return await queries.get_match(session, match_id, actor_id, self.clock())

    async def list_matches(
        self,
        *,
        actor_id: uuid.UUID,
        page: int = 1,
        page_size: int | None = None,
        view: queries.MatchListView = queries.MatchListView.UPCOMING,
        starts_from: datetime | None = None,
        starts_to: datetime | None = None,
    ) -> queries.MatchPage:
        page_size = min(page_size or self.default_page_size, self.max_page_size)
        async with self.session_factory() as session:
            return await queries.list_matches(
                session,
                actor_id=actor_id,
                now=self.clock(),
                page=max(page, 1),
                page_size=page_size,
                view=view,
                starts_from=starts_from,
                starts_to=starts_to,
            )
