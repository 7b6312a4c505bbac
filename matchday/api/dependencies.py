"""FastAPI dependencies for Matchday."""

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime

import redis.asyncio as redis
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.config import get_settings
from matchday.models.base import async_session_factory, utc_now
from matchday.services.matches.errors import Unauthenticated
from matchday.services.matches.service import MatchService


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory used by the match service (overridable in tests)."""
    return async_session_factory


async def get_db(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_redis() -> AsyncGenerator[redis.Redis, None]:
    """Get Redis client dependency."""
    settings = get_settings()
    client = redis.from_url(settings.redis_url)
    try:
        yield client
    finally:
        await client.close()


def get_clock() -> Callable[[], datetime]:
    return utc_now


def get_match_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> MatchService:
    """Get match service dependency."""
    return MatchService(session_factory, clock=clock, settings=get_settings())


def get_actor_id(x_user_id: str | None = Header(None, alias="X-User-Id")) -> uuid.UUID:
    """
    Identify the acting user from the X-User-Id header.

    Raises:
        Unauthenticated: Header missing or not a UUID
    """
    if not x_user_id:
        raise Unauthenticated("X-User-Id header is required")
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise Unauthenticated("X-User-Id must be a UUID")


def get_idempotency_key(
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
) -> str | None:
    """Idempotency-Key header; whether it is required is up to the use-case."""
    if idempotency_key is None:
        return None
    return idempotency_key.strip() or None
