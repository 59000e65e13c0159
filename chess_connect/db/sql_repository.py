"""Implementation of the repositories using SQLAlchemy"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from chess_connect.core.exceptions import (
    DuplicateFriendshipError,
    StaleWriteError,
    WriteRejectedError,
)
from chess_connect.core.models import (
    ChangeEvent,
    FriendshipModel,
    MatchModel,
    ProfileModel,
)
from chess_connect.core.shared_types import ChangeType, FriendshipStatus, MatchStatus
from chess_connect.db.change_feed import ChangeFeed
from chess_connect.db.schema import (
    DBFriendship,
    DBMatch,
    DBProfile,
    friendship_pair_key,
    utc_now,
)

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes. Everything we store is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class SQLMatchRepository:
    """Match rows stored using SQL. Every committed change is published on the feed, if one is attached."""

    table = DBMatch.__tablename__

    def __init__(self, db_session: Session, feed: Optional[ChangeFeed] = None) -> None:
        self.db = db_session
        self.feed = feed

    def get_match(self, match_id: UUID) -> MatchModel | None:
        """Get match by ID, if record exists."""
        match_db = self._fetch_match(match_id)
        if match_db:
            return self._to_model(match_db)
        return None

    def create_match(self, match: MatchModel) -> MatchModel:
        """Store new match and return the stored data, including its new ID."""
        match_db = DBMatch(
            id=uuid4(),
            player_one_id=match.player_one_id,
            player_two_id=match.player_two_id,
            status=match.status,
            moves=list(match.moves),
            winner_id=match.winner_id,
            time_control=match.time_control,
            version=0,
            expires_at=match.expires_at,
        )
        self.db.add(match_db)
        self._commit()
        self.db.refresh(match_db)
        stored = self._to_model(match_db)
        self._publish(ChangeType.INSERT, stored.id, stored)
        return stored

    def update_match(
        self, match_id: UUID, match: MatchModel, expected_version: int
    ) -> MatchModel | None:
        """
        Compare-and-set on the version column.
        ----
        The WHERE clause carries the expected version, so two writers that read the same snapshot cannot both succeed.
        """
        query = (
            update(DBMatch)
            .where(DBMatch.id == match_id, DBMatch.version == expected_version)
            .values(
                player_two_id=match.player_two_id,
                status=match.status,
                moves=list(match.moves),
                winner_id=match.winner_id,
                time_control=match.time_control,
                expires_at=match.expires_at,
                version=expected_version + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = self._execute_write(query)
        if result.rowcount == 0:
            current = self._fetch_match(match_id)
            if current is None:
                return None
            logger.info(
                "Stale write on match %s: expected version %s, stored %s",
                match_id,
                expected_version,
                current.version,
            )
            raise StaleWriteError(expected_version, current.version)

        stored = self.get_match(match_id)
        if stored is not None:
            self._publish(ChangeType.UPDATE, match_id, stored)
        return stored

    def delete_match(self, match_id: UUID) -> MatchModel | None:
        """Remove a match's record."""
        match_db = self._fetch_match(match_id)
        if not match_db:
            return None
        match_model = self._to_model(match_db)
        self.db.delete(match_db)
        self._commit()
        self._publish(ChangeType.DELETE, match_id, None)
        return match_model

    def delete_if_waiting(self, match_id: UUID) -> MatchModel | None:
        match_db = self._fetch_match(match_id)
        if not match_db or match_db.status != MatchStatus.WAITING:
            return None
        match_model = self._to_model(match_db)
        query = delete(DBMatch).where(
            DBMatch.id == match_id, DBMatch.status == MatchStatus.WAITING.value
        )
        result = self._execute_write(query)
        if result.rowcount == 0:
            # someone joined between the read and the delete
            return None
        self._publish(ChangeType.DELETE, match_id, None)
        return match_model

    def find_waiting_match(self, exclude_player: str, now: datetime) -> MatchModel | None:
        query = (
            self._live_waiting(now)
            .where(DBMatch.player_one_id != exclude_player)
            .order_by(DBMatch.created_at)
            .limit(1)
        )
        match_db = self.db.scalar(query)
        return self._to_model(match_db) if match_db else None

    def find_waiting_match_for(self, player: str, now: datetime) -> MatchModel | None:
        query = (
            self._live_waiting(now)
            .where(DBMatch.player_one_id == player)
            .order_by(DBMatch.created_at.desc())
            .limit(1)
        )
        match_db = self.db.scalar(query)
        return self._to_model(match_db) if match_db else None

    def delete_expired_waiting(self, now: datetime) -> list[MatchModel]:
        query = select(DBMatch).where(
            DBMatch.status == MatchStatus.WAITING.value,
            DBMatch.expires_at.is_not(None),
            DBMatch.expires_at <= now,
        )
        expired = [self._to_model(match_db) for match_db in self.db.scalars(query)]
        removed = []
        for match in expired:
            if match.id is not None and self.delete_if_waiting(match.id) is not None:
                removed.append(match)
        return removed

    def count_wins(self, player: str) -> int:
        query = (
            select(func.count())
            .select_from(DBMatch)
            .where(
                DBMatch.winner_id == player,
                DBMatch.status == MatchStatus.COMPLETED.value,
            )
        )
        return self.db.scalar(query) or 0

    def count_completed(self, player: str) -> int:
        query = (
            select(func.count())
            .select_from(DBMatch)
            .where(
                or_(DBMatch.player_one_id == player, DBMatch.player_two_id == player),
                DBMatch.status == MatchStatus.COMPLETED.value,
            )
        )
        return self.db.scalar(query) or 0

    # -- Internal helpers --
    def _live_waiting(self, now: datetime):
        """Waiting matches, with expiry checked at read time."""
        return select(DBMatch).where(
            DBMatch.status == MatchStatus.WAITING.value,
            DBMatch.player_two_id.is_(None),
            or_(DBMatch.expires_at.is_(None), DBMatch.expires_at > now),
        )

    def _fetch_match(self, match_id: UUID) -> DBMatch | None:
        query = select(DBMatch).where(DBMatch.id == match_id)
        return self.db.scalar(query)

    def _execute_write(self, query):
        try:
            result = self.db.execute(query)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Write to %s rejected: %s", self.table, e)
            raise WriteRejectedError() from e
        # the bulk statement bypasses the identity map
        self.db.expire_all()
        return result

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Write to %s rejected: %s", self.table, e)
            raise WriteRejectedError() from e

    def _publish(
        self, change_type: ChangeType, row_id: UUID | None, new: MatchModel | None
    ) -> None:
        if self.feed is None or row_id is None:
            return
        self.feed.publish(
            ChangeEvent(table=self.table, change_type=change_type, row_id=row_id, new=new)
        )

    def _to_model(self, match_db: DBMatch) -> MatchModel:
        """Convert SQLAlchemy model to data transfer model."""
        return MatchModel(
            id=match_db.id,
            player_one_id=match_db.player_one_id,
            player_two_id=match_db.player_two_id,
            status=match_db.status,
            moves=list(match_db.moves or []),
            winner_id=match_db.winner_id,
            time_control=match_db.time_control,
            version=match_db.version,
            expires_at=_as_utc(match_db.expires_at),
            created_at=_as_utc(match_db.created_at),
            updated_at=_as_utc(match_db.updated_at),
        )


class SQLProfileRepository:
    def __init__(self, db_session: Session) -> None:
        self.db = db_session

    def get_profile(self, user_id: str) -> ProfileModel | None:
        profile_db = self.db.get(DBProfile, user_id)
        return self._to_model(profile_db) if profile_db else None

    def create_profile(self, profile: ProfileModel) -> ProfileModel:
        profile_db = DBProfile(
            id=profile.id,
            email=profile.email,
            username=profile.username,
            rating=profile.rating,
            avatar_url=profile.avatar_url,
            bio=profile.bio,
            chess_interests=profile.chess_interests,
        )
        self.db.add(profile_db)
        self._commit()
        self.db.refresh(profile_db)
        return self._to_model(profile_db)

    def update_profile(self, profile: ProfileModel) -> ProfileModel | None:
        profile_db = self.db.get(DBProfile, profile.id)
        if not profile_db:
            return None
        profile_db.username = profile.username
        profile_db.avatar_url = profile.avatar_url
        profile_db.bio = profile.bio
        profile_db.chess_interests = profile.chess_interests
        profile_db.rating = profile.rating
        self._commit()
        self.db.refresh(profile_db)
        return self._to_model(profile_db)

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Write to profiles rejected: %s", e)
            raise WriteRejectedError() from e

    def _to_model(self, profile_db: DBProfile) -> ProfileModel:
        return ProfileModel(
            id=profile_db.id,
            email=profile_db.email,
            username=profile_db.username,
            rating=profile_db.rating,
            avatar_url=profile_db.avatar_url,
            bio=profile_db.bio,
            chess_interests=profile_db.chess_interests,
            created_at=_as_utc(profile_db.created_at),
            updated_at=_as_utc(profile_db.updated_at),
        )


class SQLFriendshipRepository:
    def __init__(self, db_session: Session) -> None:
        self.db = db_session

    def get_friendship(self, friendship_id: UUID) -> FriendshipModel | None:
        friendship_db = self.db.get(DBFriendship, friendship_id)
        return self._to_model(friendship_db) if friendship_db else None

    def create_friendship(self, friendship: FriendshipModel) -> FriendshipModel:
        friendship_db = DBFriendship(
            id=uuid4(),
            user_id=friendship.user_id,
            friend_id=friendship.friend_id,
            pair_key=friendship_pair_key(friendship.user_id, friendship.friend_id),
            status=friendship.status,
        )
        self.db.add(friendship_db)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateFriendshipError(
                f"{friendship.user_id!r} and {friendship.friend_id!r} already have a friendship record."
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Write to friendships rejected: %s", e)
            raise WriteRejectedError() from e
        self.db.refresh(friendship_db)
        return self._to_model(friendship_db)

    def find_between(self, user_a: str, user_b: str) -> FriendshipModel | None:
        query = select(DBFriendship).where(
            DBFriendship.pair_key == friendship_pair_key(user_a, user_b)
        )
        friendship_db = self.db.scalar(query)
        return self._to_model(friendship_db) if friendship_db else None

    def update_status(self, friendship_id: UUID, status: str) -> FriendshipModel | None:
        friendship_db = self.db.get(DBFriendship, friendship_id)
        if not friendship_db:
            return None
        friendship_db.status = status
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Write to friendships rejected: %s", e)
            raise WriteRejectedError() from e
        self.db.refresh(friendship_db)
        return self._to_model(friendship_db)

    def count_accepted(self, player: str) -> int:
        query = (
            select(func.count())
            .select_from(DBFriendship)
            .where(
                or_(DBFriendship.user_id == player, DBFriendship.friend_id == player),
                DBFriendship.status == FriendshipStatus.ACCEPTED.value,
            )
        )
        return self.db.scalar(query) or 0

    def list_pending_for(self, player: str) -> list[FriendshipModel]:
        query = (
            select(DBFriendship)
            .where(
                DBFriendship.friend_id == player,
                DBFriendship.status == FriendshipStatus.PENDING.value,
            )
            .order_by(DBFriendship.created_at)
        )
        return [self._to_model(friendship_db) for friendship_db in self.db.scalars(query)]

    def _to_model(self, friendship_db: DBFriendship) -> FriendshipModel:
        return FriendshipModel(
            id=friendship_db.id,
            user_id=friendship_db.user_id,
            friend_id=friendship_db.friend_id,
            status=friendship_db.status,
            created_at=_as_utc(friendship_db.created_at),
        )
