"""
Type definitions used across layers
"""

from enum import StrEnum


class MatchStatus(StrEnum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"


# Status only ever moves forward along this table.
ALLOWED_TRANSITIONS: dict[MatchStatus, set[MatchStatus]] = {
    MatchStatus.WAITING: {MatchStatus.ACTIVE},
    MatchStatus.ACTIVE: {MatchStatus.COMPLETED},
    MatchStatus.COMPLETED: set(),
}


class Color(StrEnum):
    WHITE = "white"
    BLACK = "black"

    @property
    def opposite(self) -> "Color":
        return Color.BLACK if self == Color.WHITE else Color.WHITE


class FriendshipStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"


class SessionPhase(StrEnum):
    LOADING = "loading"
    ACTIVE = "active"
    COMPLETED = "completed"


class SearchState(StrEnum):
    IDLE = "idle"
    WAITING = "waiting"
    PAIRED = "paired"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ChangeType(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


# Name of the match table, shared by the schema and the change feed subscribers.
MATCHES_TABLE = "matches"
