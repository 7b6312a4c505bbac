"""Idempotency coordinator for keyed mutating requests.

A request is scoped by (key, actor_id, route, match_id). The first request
in a scope runs its action and stores the JSON result; later requests with
the same payload replay that result without running the action again, and
requests with a different payload are rejected.

The action runs in the same transaction that inserts the record, so the
mutation and its record commit or roll back together. The unique constraint
on the scope decides concurrent duplicates: whichever transaction commits
second hits IntegrityError, is rolled back entirely, and falls back to the
replay/reuse path.

Callers that serialize writers on a lock pass it as `lock`; it is taken
before the record lookup, so a duplicate that queued behind the original
request finds its record and replays it.
"""

import hashlib
import json
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.models.base import utc_now
from matchday.models.domain import IdempotencyRecord
from matchday.services.matches.errors import IdempotencyKeyReuse

logger = structlog.get_logger(__name__)

DEFAULT_TTL = timedelta(hours=48)

Action = Callable[[AsyncSession], Awaitable[Any]]


def compute_request_hash(body: Any) -> str:
    """
    Stable digest of a request payload.

    Keys are sorted so the same logical object always hashes the same,
    whatever order its keys were built in.
    """
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def to_payload(result: Any) -> Any:
    """Convert an action result to the JSON-native form that gets stored."""
    if hasattr(result, "to_payload"):
        return result.to_payload()
    return json.loads(json.dumps(result, default=str))


class IdempotencyCoordinator:
    """
    Run keyed actions at most once per (key, actor, route, match).

    Usage:
        coordinator = IdempotencyCoordinator(session_factory)
        payload = await coordinator.run(
            key=key, actor_id=actor_id, route="POST /matches/:id/confirm",
            match_id=match_id, request_body={...}, action=apply,
        )
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.ttl = ttl
        self.clock = clock

    async def _load(
        self,
        session: AsyncSession,
        key: str,
        actor_id: uuid.UUID,
        route: str,
        match_id: uuid.UUID | None,
    ) -> IdempotencyRecord | None:
        query = select(IdempotencyRecord).where(
            IdempotencyRecord.key == key,
            IdempotencyRecord.actor_id == actor_id,
            IdempotencyRecord.route == route,
        )
        if match_id is None:
            query = query.where(IdempotencyRecord.match_id.is_(None))
        else:
            query = query.where(IdempotencyRecord.match_id == match_id)
        result = await session.execute(query)
        return result.scalar_one_or_none()

    def _replay(self, record: IdempotencyRecord, request_hash: str, route: str) -> Any:
        if record.request_hash != request_hash:
            logger.warning(
                "idempotency_key_reuse",
                route=route,
                key=record.key,
                actor_id=str(record.actor_id),
            )
            raise IdempotencyKeyReuse("Idempotency key was used with a different request")

        logger.info(
            "idempotency_replay",
            route=route,
            key=record.key,
            actor_id=str(record.actor_id),
        )
        return record.response_json

    async def run(
        self,
        *,
        key: str,
        actor_id: uuid.UUID,
        route: str,
        match_id: uuid.UUID | None,
        request_body: Any,
        action: Action,
        lock: Action | None = None,
    ) -> Any:
        """
        Execute action once for this scope and return its JSON payload.

        lock, when given, runs first in the same transaction.

        Raises:
            IdempotencyKeyReuse: The scope already holds a different payload
        """
        request_hash = compute_request_hash(request_body)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    if lock is not None:
                        await lock(session)
                    record = await self._load(session, key, actor_id, route, match_id)
                    if record is not None:
                        if record.expires_at > self.clock():
                            return self._replay(record, request_hash, route)
                        # Expired: forget it and run again. Flush the delete now
                        # so it lands before the insert of the new record.
                        await session.delete(record)
                        await session.flush()

                    payload = to_payload(await action(session))

                    now = self.clock()
                    session.add(
                        IdempotencyRecord(
                            key=key,
                            actor_id=actor_id,
                            route=route,
                            match_id=match_id,
                            request_hash=request_hash,
                            response_json=payload,
                            created_at=now,
                            expires_at=now + self.ttl,
                        )
                    )
                    await session.flush()
                return payload
        except IntegrityError:
            # A concurrent duplicate committed first. Our transaction,
            # including the action's writes, has been rolled back.
            async with self.session_factory() as session:
                record = await self._load(session, key, actor_id, route, match_id)
            if record is None:
                raise
            logger.info("idempotency_race_lost", route=route, key=key)
            return self._replay(record, request_hash, route)


async def purge_expired_records(session: AsyncSession, now: datetime) -> int:
    """Delete idempotency records that expired before now."""
    result = await session.execute(
        delete(IdempotencyRecord).where(IdempotencyRecord.expires_at < now)
    )
    count = result.rowcount or 0
    if count > 0:
        logger.info("idempotency_records_purged", count=count)
    return count
