"""
Boundary layer data model(s).

These objects are used to communicate with the Services.
The db layer (lower) and the domain/api layers (higher) all send and receive the models defined here,
which decouples the SQLAlchemy tables from the information needed to cross boundaries.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import UUID

# Type aliases to make the models easier to read
UserId = str
SanMove = str


@dataclass
class MatchModel:
    """Transport-safe representation of one match row."""

    player_one_id: UserId
    status: str
    time_control: str
    moves: list[SanMove] = field(default_factory=list)
    player_two_id: Optional[UserId] = None
    winner_id: Optional[UserId] = None
    id: Optional[UUID] = None
    version: int = 0
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class ProfileModel:
    id: UserId
    email: str
    username: str
    rating: int
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    chess_interests: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class FriendshipModel:
    """user_id sent the request, friend_id is the one who may accept it."""

    user_id: UserId
    friend_id: UserId
    status: str
    id: Optional[UUID] = None
    created_at: Optional[datetime] = None


@dataclass
class ChangeEvent:
    """A row mutation as delivered by the change feed. `new` is None for deletions."""

    table: str
    change_type: str
    row_id: UUID
    new: Optional[MatchModel] = None
