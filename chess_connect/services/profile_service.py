"""Player profiles and the statistics shown on the dashboard."""

import logging
from dataclasses import replace
from typing import Optional

from chess_connect.api.models import ProfileUpdateRequest, StatsResponse
from chess_connect.core.config import Settings, get_settings
from chess_connect.core.exceptions import NotFoundError
from chess_connect.core.models import ProfileModel
from chess_connect.db.repository import (
    FriendshipRepository,
    MatchRepository,
    ProfileRepository,
)
from chess_connect.services.auth import AuthProvider, require_user

logger = logging.getLogger(__name__)


class ProfileService:
    def __init__(
        self,
        profiles: ProfileRepository,
        matches: MatchRepository,
        friendships: FriendshipRepository,
        settings: Optional[Settings] = None,
    ) -> None:
        self.profiles = profiles
        self.matches = matches
        self.friendships = friendships
        self.settings = settings or get_settings()

    def get_or_create(self, auth: AuthProvider) -> ProfileModel:
        """Profile of the signed-in user. Created with a seed rating on first access."""
        user = require_user(auth)
        existing = self.profiles.get_profile(user.id)
        if existing is not None:
            return existing

        created = self.profiles.create_profile(
            ProfileModel(
                id=user.id,
                email=user.email,
                username=user.email.split("@")[0],
                rating=self.settings.default_rating,
            )
        )
        logger.info("Created profile for %s", user.id)
        return created

    def get_profile(self, user_id: str) -> ProfileModel:
        profile = self.profiles.get_profile(user_id)
        if profile is None:
            raise NotFoundError(f"Profile with {user_id=} not found.")
        return profile

    def update_profile(
        self, auth: AuthProvider, request: ProfileUpdateRequest
    ) -> ProfileModel:
        """Users can only edit their own profile: the target is always the signed-in user."""
        user = require_user(auth)
        current = self.get_profile(user.id)
        changed = replace(
            current,
            username=request.username,
            bio=request.bio,
            chess_interests=request.chess_interests,
            avatar_url=request.avatar_url,
        )
        updated = self.profiles.update_profile(changed)
        if updated is None:
            raise NotFoundError(f"Profile with user_id={user.id!r} not found.")
        return updated

    def stats(self, user_id: str) -> StatsResponse:
        return StatsResponse(
            user_id=user_id,
            friends=self.friendships.count_accepted(user_id),
            wins=self.matches.count_wins(user_id),
            total_matches=self.matches.count_completed(user_id),
        )

    def sign_out(self, auth: AuthProvider) -> None:
        auth.sign_out()
