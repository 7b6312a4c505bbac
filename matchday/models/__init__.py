"""Database models for Matchday."""

from matchday.models.base import Base, async_session_factory, engine, utc_now
from matchday.models.domain import (
    IdempotencyRecord,
    Match,
    MatchParticipant,
    MatchStatus,
    ParticipantStatus,
    User,
)

__all__ = [
    # Base
    "Base",
    "engine",
    "async_session_factory",
    "utc_now",
    # Domain models
    "User",
    "Match",
    "MatchStatus",
    "MatchParticipant",
    "ParticipantStatus",
    "IdempotencyRecord",
]
