"""Domain models for Matchday.

This module defines the database models for match scheduling.
The matches row is the unit of locking: every write to a match or to one of
its participant rows happens while holding that match's row lock.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from matchday.models.base import Base, TimestampMixin, UTCDateTime, utc_now


class MatchStatus(str, Enum):
    """Persisted match status. Display status is derived separately."""

    SCHEDULED = "scheduled"
    LOCKED = "locked"
    PLAYED = "played"
    CANCELED = "canceled"


class ParticipantStatus(str, Enum):
    """Participation state of one user in one match."""

    INVITED = "INVITED"
    CONFIRMED = "CONFIRMED"
    WAITLISTED = "WAITLISTED"
    DECLINED = "DECLINED"
    WITHDRAWN = "WITHDRAWN"


class User(Base, TimestampMixin):
    """
    Directory entry for a person who can create or join matches.

    Usernames and emails are stored lower-cased.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    username: Mapped[str | None] = mapped_column(String(50), unique=True, nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), unique=True, nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.username or self.id}>"


class Match(Base, TimestampMixin):
    """
    A scheduled group match.

    revision starts at 1 and increments exactly once per successful
    state-changing operation. created_by_id is the current creator and can
    be reassigned when the creator leaves.
    """

    __tablename__ = "matches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    location: Mapped[str | None] = mapped_column(String(300), nullable=True)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=MatchStatus.SCHEDULED.value,
        nullable=False,
        doc="scheduled, locked, played, canceled",
    )
    revision: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Lock state (blocks confirm/decline/invite/update, never withdraw)
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    locked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    locked_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    created_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_matches_capacity_positive"),
        Index("idx_matches_starts_at", "starts_at"),
        Index("idx_matches_created_by", "created_by_id"),
    )

    # UPDATEs match on the loaded revision (StaleDataError otherwise).
    # Use-cases bump revision themselves.
    __mapper_args__ = {"version_id_col": revision, "version_id_generator": False}

    @property
    def is_canceled(self) -> bool:
        return self.status == MatchStatus.CANCELED

    def __repr__(self) -> str:
        return f"<Match {self.title} rev={self.revision} status={self.status}>"


class MatchParticipant(Base, TimestampMixin):
    """
    One user's participation in one match.

    waitlist_position is set only while WAITLISTED and grows strictly per
    match (FIFO order). confirmed_at is set only while CONFIRMED.
    Leave hard-deletes the row; Withdraw keeps it as WITHDRAWN.
    """

    __tablename__ = "match_participants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    match_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="INVITED, CONFIRMED, WAITLISTED, DECLINED, WITHDRAWN",
    )
    waitlist_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Match-admin rights (invite, lock/unlock)
    is_match_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    admin_granted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("match_id", "user_id", name="uq_match_participants_match_user"),
        Index("idx_match_participants_status", "match_id", "status"),
        Index("idx_match_participants_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<MatchParticipant {self.user_id} {self.status} in {self.match_id}>"


class IdempotencyRecord(Base):
    """
    Stored result of an idempotency-keyed request.

    For a fixed (key, actor_id, route, match_id) every request must carry the
    same request_hash for as long as the record lives; a different hash is a
    key reuse conflict.
    """

    __tablename__ = "idempotency_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(200), nullable=False)
    actor_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    route: Mapped[str] = mapped_column(String(100), nullable=False)
    match_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    response_json: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "key", "actor_id", "route", "match_id", name="uq_idempotency_scope"
        ),
        Index("idx_idempotency_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<IdempotencyRecord {self.route} key={self.key}>"
