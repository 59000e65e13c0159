"""Requests and Response models"""

from datetime import datetime
from enum import StrEnum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, field_validator

from chess_connect.core.exceptions import InvalidRequestError
from chess_connect.core.shared_types import FriendshipStatus, MatchStatus

UserId = str

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 32


def _is_algebraic_square(value: str) -> bool:
    if len(value) != 2:
        return False
    file, rank = value[0], value[1]
    return file in "abcdefgh" and rank in "12345678"


# --- REQUEST MODELS ---
class SearchRequest(BaseModel):
    user_id: UserId
    time_control: Optional[str] = None


class CancelSearchRequest(BaseModel):
    match_id: UUID
    user_id: UserId


class MoveRequest(BaseModel):
    match_id: UUID
    from_square: str
    to_square: str

    @field_validator("from_square", "to_square")
    @classmethod
    def validate_square(cls, value: str) -> str:
        value = value.strip().lower()
        if not _is_algebraic_square(value):
            raise InvalidRequestError(
                f"Cannot interpret {value!r} as a valid square name."
            )
        return value


class FriendRequest(BaseModel):
    user_id: UserId
    friend_id: UserId

    @field_validator("friend_id")
    @classmethod
    def validate_friend(cls, value: str) -> str:
        if not value.strip():
            raise InvalidRequestError("A friend request needs a target user.")
        return value


class AcceptFriendRequest(BaseModel):
    friendship_id: UUID
    user_id: UserId


class ProfileUpdateRequest(BaseModel):
    username: str
    bio: Optional[str] = None
    chess_interests: Optional[str] = None
    avatar_url: Optional[str] = None

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str) -> str:
        value = value.strip()
        if not USERNAME_MIN_LENGTH <= len(value) <= USERNAME_MAX_LENGTH:
            raise InvalidRequestError(
                f"Username must be between {USERNAME_MIN_LENGTH} and {USERNAME_MAX_LENGTH} characters."
            )
        return value


# --- RESPONSE MODELS ---
class SearchOutcome(StrEnum):
    JOINED = "joined"
    WAITING = "waiting"


class SearchResponse(BaseModel):
    match_id: UUID
    outcome: SearchOutcome
    expires_at: Optional[datetime] = None


class MatchResponse(BaseModel):
    match_id: UUID
    player_one_id: UserId
    player_two_id: Optional[UserId]
    status: MatchStatus
    moves: list[str]
    winner_id: Optional[UserId]
    time_control: str
    version: int


class FriendshipResponse(BaseModel):
    friendship_id: UUID
    user_id: UserId
    friend_id: UserId
    status: FriendshipStatus


class StatsResponse(BaseModel):
    user_id: UserId
    friends: int
    wins: int
    total_matches: int

