"""Database tables / schema"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from chess_connect.core.shared_types import MATCHES_TABLE


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class DBMatch(Base):
    __tablename__ = MATCHES_TABLE
    id: Mapped[UUID] = mapped_column(primary_key=True)
    player_one_id: Mapped[str]
    player_two_id: Mapped[Optional[str]]
    status: Mapped[str]
    moves: Mapped[list[str]] = mapped_column(JSON, default=list)
    winner_id: Mapped[Optional[str]]
    time_control: Mapped[str]
    version: Mapped[int] = mapped_column(default=0)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("idx_matches_status", "status"),
        Index("idx_matches_player_one", "player_one_id"),
    )


class DBProfile(Base):
    __tablename__ = "profiles"
    id: Mapped[str] = mapped_column(primary_key=True)
    email: Mapped[str]
    username: Mapped[str]
    rating: Mapped[int] = mapped_column(default=1200)
    avatar_url: Mapped[Optional[str]]
    bio: Mapped[Optional[str]]
    chess_interests: Mapped[Optional[str]]
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class DBFriendship(Base):
    __tablename__ = "friendships"
    id: Mapped[UUID] = mapped_column(primary_key=True)
    user_id: Mapped[str]
    friend_id: Mapped[str]
    # both ids sorted and joined, so (a, b) and (b, a) collide on the unique constraint
    pair_key: Mapped[str]
    status: Mapped[str]
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint("pair_key", name="uq_friendships_pair"),
        Index("idx_friendships_friend", "friend_id"),
    )


def friendship_pair_key(user_id: str, friend_id: str) -> str:
    low, high = sorted((user_id, friend_id))
    return f"{low}:{high}"
