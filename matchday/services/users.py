"""User directory and user reference resolution.

Invite targets arrive either as an explicit user id or as a free-form
identifier ("@alice", "alice", "alice@example.com"). parse_user_reference
turns both into one tagged reference at the boundary; everything downstream
only deals with the tagged form.
"""

import uuid
from dataclasses import dataclass
from typing import Union

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.models.domain import User
from matchday.services.matches.errors import UserNotFound, ValidationFailed

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ByUserId:
    user_id: uuid.UUID


@dataclass(frozen=True)
class ByUsername:
    username: str


@dataclass(frozen=True)
class ByEmail:
    email: str


UserReference = Union[ByUserId, ByUsername, ByEmail]


def parse_user_reference(
    user_id: uuid.UUID | str | None = None,
    identifier: str | None = None,
) -> UserReference:
    """
    Parse an invite target into a tagged reference.

    An explicit user_id wins. Otherwise the identifier is trimmed and:
    - "@name" is a username
    - anything else containing "@" is an email
    - anything else is a username
    Usernames and emails are lower-cased.

    Raises:
        ValidationFailed: Neither a user id nor a usable identifier was given
    """
    if user_id:
        try:
            return ByUserId(user_id if isinstance(user_id, uuid.UUID) else uuid.UUID(user_id))
        except ValueError:
            raise ValidationFailed("userId must be a UUID")

    raw = (identifier or "").strip()
    if raw.startswith("@"):
        raw = raw[1:].strip()
        if raw:
            return ByUsername(raw.lower())
    elif "@" in raw:
        return ByEmail(raw.lower())
    elif raw:
        return ByUsername(raw.lower())

    raise ValidationFailed("Either userId or identifier must be provided")


class UserDirectory:
    """Look users up by id, username or email."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: uuid.UUID) -> User | None:
        return await self.session.get(User, user_id)

    async def get_by_username(self, username: str) -> User | None:
        result = await self.session.execute(
            select(User).where(User.username == username.lower())
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> User | None:
        result = await self.session.execute(
            select(User).where(User.email == email.lower())
        )
        return result.scalar_one_or_none()

    async def find(self, reference: UserReference) -> User | None:
        if isinstance(reference, ByUserId):
            return await self.get_by_id(reference.user_id)
        if isinstance(reference, ByUsername):
            return await self.get_by_username(reference.username)
        return await self.get_by_email(reference.email)

    async def resolve(self, reference: UserReference) -> uuid.UUID:
        """
        Resolve a reference to a stable user id.

        Raises:
            UserNotFound: No user matches the reference
        """
        user = await self.find(reference)
        if user is None:
            logger.info("user_not_found", reference=repr(reference))
            raise UserNotFound("User not found")
        return user.id

    async def lookup(self, query: str) -> User:
        """Find a user by free-form query (username, @username or email)."""
        user = await self.find(parse_user_reference(identifier=query))
        if user is None:
            raise UserNotFound("User not found")
        return user

    async def ensure(self, user_id: uuid.UUID) -> User:
        """Return the user row for user_id, creating a bare one if missing."""
        user = await self.get_by_id(user_id)
        if user is None:
            user = User(id=user_id)
            self.session.add(user)
            await self.session.flush()
        return user
