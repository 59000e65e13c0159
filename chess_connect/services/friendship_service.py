"""Friend requests between players (typically sent to an opponent after a match)."""

import logging

from chess_connect.api.models import (
    AcceptFriendRequest,
    FriendRequest,
    FriendshipResponse,
)
from chess_connect.core.exceptions import (
    DuplicateFriendshipError,
    InvalidRequestError,
    NotFoundError,
    PermissionDeniedError,
)
from chess_connect.core.models import FriendshipModel
from chess_connect.core.shared_types import FriendshipStatus
from chess_connect.db.repository import FriendshipRepository

logger = logging.getLogger(__name__)


class FriendshipService:
    def __init__(self, repository: FriendshipRepository) -> None:
        self.repo = repository

    def send_request(self, request: FriendRequest) -> FriendshipResponse:
        """Record a pending request. One record per pair of users, whichever direction it was sent in."""
        if request.user_id == request.friend_id:
            raise InvalidRequestError("You cannot send a friend request to yourself.")

        existing = self.repo.find_between(request.user_id, request.friend_id)
        if existing is not None:
            raise DuplicateFriendshipError(
                f"Friendship between {request.user_id!r} and {request.friend_id!r} already {existing.status}."
            )

        created = self.repo.create_friendship(
            FriendshipModel(
                user_id=request.user_id,
                friend_id=request.friend_id,
                status=FriendshipStatus.PENDING,
            )
        )
        logger.info("Friend request %s -> %s", request.user_id, request.friend_id)
        return self._create_response(created)

    def accept(self, request: AcceptFriendRequest) -> FriendshipResponse:
        """Only the user a request was sent to can accept it."""
        friendship = self.repo.get_friendship(request.friendship_id)
        if friendship is None:
            raise NotFoundError(f"Friendship with {request.friendship_id=} not found.")
        if friendship.friend_id != request.user_id:
            raise PermissionDeniedError("Only the recipient can accept a friend request.")
        if friendship.status != FriendshipStatus.PENDING:
            raise InvalidRequestError(
                f"Friend request is not pending. status: {friendship.status}"
            )

        accepted = self.repo.update_status(request.friendship_id, FriendshipStatus.ACCEPTED)
        if accepted is None:
            raise NotFoundError(f"Friendship with {request.friendship_id=} not found.")
        logger.info("Friend request %s accepted by %s", request.friendship_id, request.user_id)
        return self._create_response(accepted)

    def pending_for(self, user_id: str) -> list[FriendshipResponse]:
        return [self._create_response(f) for f in self.repo.list_pending_for(user_id)]

    def _create_response(self, model: FriendshipModel) -> FriendshipResponse:
        assert model.id is not None
        return FriendshipResponse(
            friendship_id=model.id,
            user_id=model.user_id,
            friend_id=model.friend_id,
            status=FriendshipStatus(model.status),
        )
