"""Pairing of searching users into matches, on top of the shared match table."""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from chess_connect.api.models import (
    CancelSearchRequest,
    SearchOutcome,
    SearchRequest,
    SearchResponse,
)
from chess_connect.core.config import Settings, get_settings
from chess_connect.core.exceptions import (
    MatchStateError,
    NotAParticipantError,
    RepositoryError,
    StaleWriteError,
)
from chess_connect.core.models import ChangeEvent, MatchModel
from chess_connect.core.shared_types import (
    MATCHES_TABLE,
    ChangeType,
    MatchStatus,
    SearchState,
)
from chess_connect.db.change_feed import ChangeFeed, Subscription
from chess_connect.db.repository import MatchRepository
from chess_connect.db.schema import utc_now
from chess_connect.game.match import Match
from chess_connect.game.time_control import TimeControl

logger = logging.getLogger(__name__)

PairedCallback = Callable[[MatchModel], None]


class MatchmakingService:
    """Find an opponent for a user, or register the user as waiting for one."""

    def __init__(
        self,
        repository: MatchRepository,
        feed: ChangeFeed,
        settings: Optional[Settings] = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repo = repository
        self.feed = feed
        self.settings = settings or get_settings()
        self.now = now

    def search(self, request: SearchRequest) -> SearchResponse:
        """
        Join someone else's waiting match, or open a new one.
        ----
        1. A user that is already waiting gets their own match back (never two waiting rows per user).
        2. Claim the oldest live waiting match of another user with a versioned write.
        3. Losing the claim to a concurrent joiner means searching again, a bounded number of times.
        4. Nothing to join: open a waiting match that expires after the search timeout.
        """
        now = self.now()
        time_control = TimeControl.parse(
            request.time_control or self.settings.default_time_control
        )

        own = self.repo.find_waiting_match_for(request.user_id, now)
        if own is not None and own.id is not None:
            logger.info("User %s is already waiting in match %s", request.user_id, own.id)
            return SearchResponse(
                match_id=own.id, outcome=SearchOutcome.WAITING, expires_at=own.expires_at
            )

        attempts = self.settings.matchmaking_attempts
        for attempt in range(1, attempts + 1):
            candidate = self.repo.find_waiting_match(request.user_id, now)
            if candidate is None:
                break
            joined = self._try_join(candidate, request.user_id)
            if joined is not None and joined.id is not None:
                logger.info(
                    "User %s joined match %s against %s",
                    request.user_id,
                    joined.id,
                    joined.player_one_id,
                )
                return SearchResponse(match_id=joined.id, outcome=SearchOutcome.JOINED)
            logger.info(
                "User %s lost the race for match %s (attempt %s/%s)",
                request.user_id,
                candidate.id,
                attempt,
                attempts,
            )

        created = self._open_search(request.user_id, time_control, now)
        if created.id is None:
            raise RepositoryError("Store did not assign an id to the new match.")
        logger.info(
            "User %s is waiting in new match %s until %s",
            request.user_id,
            created.id,
            created.expires_at,
        )
        return SearchResponse(
            match_id=created.id,
            outcome=SearchOutcome.WAITING,
            expires_at=created.expires_at,
        )

    def cancel(self, request: CancelSearchRequest) -> bool:
        """Withdraw a search. Returns True if the waiting match was removed."""
        model = self.repo.get_match(request.match_id)
        if model is None:
            return False
        if model.player_one_id != request.user_id:
            raise NotAParticipantError(
                f"Match {request.match_id} was not opened by {request.user_id!r}."
            )
        removed = self.repo.delete_if_waiting(request.match_id)
        if removed is not None:
            logger.info("User %s cancelled search %s", request.user_id, request.match_id)
        return removed is not None

    def reap_expired(self) -> list[MatchModel]:
        """Janitor: remove waiting matches nobody joined before their expiry."""
        removed = self.repo.delete_expired_waiting(self.now())
        if removed:
            logger.info("Removed %s expired waiting match(es)", len(removed))
        return removed

    def wait_for_opponent(
        self,
        match_id: UUID,
        user_id: str,
        on_paired: Optional[PairedCallback] = None,
    ) -> "PendingSearch":
        """Subscribe to our waiting match and get told when somebody joins it."""
        return PendingSearch(
            match_id, user_id, self.repo, self.feed, on_paired, now=self.now
        )

    # -- Internal helpers --
    def _try_join(self, candidate: MatchModel, user_id: str) -> MatchModel | None:
        if candidate.id is None:
            return None
        match = Match.from_model(candidate)
        try:
            match.pair(user_id)
        except MatchStateError as e:
            logger.debug("Cannot join match %s: %s", candidate.id, e)
            return None
        try:
            return self.repo.update_match(
                candidate.id, match.to_model(), expected_version=candidate.version
            )
        except StaleWriteError:
            return None

    def _open_search(
        self, user_id: str, time_control: TimeControl, now: datetime
    ) -> MatchModel:
        expires_at = now + timedelta(seconds=self.settings.search_timeout_seconds)
        match = Match.new_search(user_id, time_control, expires_at)
        return self.repo.create_match(match.to_model())


class PendingSearch:
    """
    Client side of a waiting match.

    waiting -> paired | cancelled | expired. Every exit unsubscribes from the change feed.
    """

    def __init__(
        self,
        match_id: UUID,
        user_id: str,
        repository: MatchRepository,
        feed: ChangeFeed,
        on_paired: Optional[PairedCallback] = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.match_id = match_id
        self.user_id = user_id
        self.repo = repository
        self.on_paired = on_paired
        self.now = now
        self.state = SearchState.WAITING
        self.match: MatchModel | None = None
        # final state of a removal we asked for ourselves
        self._withdrawing: SearchState | None = None
        self._subscription: Subscription | None = feed.subscribe(
            MATCHES_TABLE, match_id, self._on_change
        )

        # No replay of earlier events: look at the row once we are subscribed.
        current = self.repo.get_match(match_id)
        if current is None:
            self._finish(SearchState.CANCELLED)
        else:
            self._observe(current)

    @property
    def expires_at(self) -> datetime | None:
        return self.match.expires_at if self.match else None

    def cancel(self) -> SearchState:
        """User gave up waiting."""
        return self._withdraw(SearchState.CANCELLED)

    def check_expiry(self, now: datetime) -> SearchState:
        """Give up if the match's expiry passed without anybody joining."""
        if (
            self.state == SearchState.WAITING
            and self.expires_at is not None
            and self.expires_at <= now
        ):
            return self._withdraw(SearchState.EXPIRED)
        return self.state

    def _withdraw(self, final_state: SearchState) -> SearchState:
        if self.state != SearchState.WAITING:
            return self.state
        self._withdrawing = final_state
        removed = self.repo.delete_if_waiting(self.match_id)
        if removed is None:
            self._withdrawing = None
            # Somebody may have joined just before the delete
            current = self.repo.get_match(self.match_id)
            if current is not None and current.status != MatchStatus.WAITING:
                self._observe(current)
                return self.state
        self._finish(final_state)
        return self.state

    def _on_change(self, event: ChangeEvent) -> None:
        if self.state != SearchState.WAITING:
            return
        if event.change_type == ChangeType.DELETE:
            final_state = self._removal_state()
            logger.info("Waiting match %s was removed (%s)", self.match_id, final_state)
            self._finish(final_state)
            return
        if event.new is not None:
            self._observe(event.new)

    def _removal_state(self) -> SearchState:
        """Our own withdrawal decides the state. Otherwise a passed expiry means the janitor removed the row."""
        if self._withdrawing is not None:
            return self._withdrawing
        if self.expires_at is not None and self.expires_at <= self.now():
            return SearchState.EXPIRED
        return SearchState.CANCELLED

    def _observe(self, model: MatchModel) -> None:
        self.match = model
        if model.status == MatchStatus.WAITING:
            return
        self._finish(SearchState.PAIRED)
        logger.info("Match %s paired with %s", self.match_id, model.player_two_id)
        if self.on_paired is not None:
            self.on_paired(model)

    def _finish(self, state: SearchState) -> None:
        self.state = state
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
