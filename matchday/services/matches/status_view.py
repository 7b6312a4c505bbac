"""Display status of a match, derived from stored state and the clock."""

from datetime import datetime, timedelta
from enum import Enum

from matchday.models.domain import MatchStatus

# A match counts as played one hour after its start
PLAYED_GRACE = timedelta(hours=1)


class MatchStatusView(str, Enum):
    UPCOMING = "UPCOMING"
    PLAYED = "PLAYED"
    CANCELLED = "CANCELLED"


def derive_status(status: str, starts_at: datetime, now: datetime) -> MatchStatusView:
    """
    Derive the display status without touching the database.

    - canceled in storage => CANCELLED (even for past matches)
    - now >= starts_at + 1h => PLAYED
    - otherwise => UPCOMING
    """
    if status == MatchStatus.CANCELED:
        return MatchStatusView.CANCELLED
    if now >= starts_at + PLAYED_GRACE:
        return MatchStatusView.PLAYED
    return MatchStatusView.UPCOMING
