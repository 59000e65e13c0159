"""Protocol repositories: the data store surface the services rely on."""

from datetime import datetime
from typing import Protocol
from uuid import UUID

from chess_connect.core.models import FriendshipModel, MatchModel, ProfileModel


class MatchRepository(Protocol):
    """Persistence of match rows"""

    def get_match(self, match_id: UUID) -> MatchModel | None:
        """Get match by ID, if record exists."""
        ...

    def create_match(self, match: MatchModel) -> MatchModel:
        """Store new match and return the stored data, including its new ID."""
        ...

    def update_match(
        self, match_id: UUID, match: MatchModel, expected_version: int
    ) -> MatchModel | None:
        """
        Overwrite the record, but only if it is still at `expected_version`.
        Raises StaleWriteError on a version mismatch. Returns None if the record no longer exists.
        """
        ...

    def delete_match(self, match_id: UUID) -> MatchModel | None:
        """Remove a match's record."""
        ...

    def delete_if_waiting(self, match_id: UUID) -> MatchModel | None:
        """Remove a match's record only while nobody joined it yet."""
        ...

    def find_waiting_match(self, exclude_player: str, now: datetime) -> MatchModel | None:
        """Oldest unexpired waiting match opened by someone other than `exclude_player`."""
        ...

    def find_waiting_match_for(self, player: str, now: datetime) -> MatchModel | None:
        """Unexpired waiting match opened by `player` itself."""
        ...

    def delete_expired_waiting(self, now: datetime) -> list[MatchModel]:
        """Remove every waiting match whose expiry passed."""
        ...

    def count_wins(self, player: str) -> int: ...

    def count_completed(self, player: str) -> int: ...


class ProfileRepository(Protocol):
    def get_profile(self, user_id: str) -> ProfileModel | None: ...

    def create_profile(self, profile: ProfileModel) -> ProfileModel: ...

    def update_profile(self, profile: ProfileModel) -> ProfileModel | None: ...


class FriendshipRepository(Protocol):
    def get_friendship(self, friendship_id: UUID) -> FriendshipModel | None: ...

    def create_friendship(self, friendship: FriendshipModel) -> FriendshipModel:
        """Raises DuplicateFriendshipError if the pair already has a row (in either direction)."""
        ...

    def find_between(self, user_a: str, user_b: str) -> FriendshipModel | None: ...

    def update_status(self, friendship_id: UUID, status: str) -> FriendshipModel | None: ...

    def count_accepted(self, player: str) -> int: ...

    def list_pending_for(self, player: str) -> list[FriendshipModel]: ...
