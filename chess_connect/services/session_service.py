"""
One client's view of a match in progress.

The match row in the store is the single source of truth. The session keeps a local mirror of it,
rebuilt only from row snapshots (initial fetch, change feed, results of our own writes).
The only local state that runs ahead of the store is the move we are currently writing (`pending_move`).
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

from chess_connect.api.models import (
    FriendRequest,
    FriendshipResponse,
    MatchResponse,
    MoveRequest,
)
from chess_connect.core.exceptions import (
    ChessConnectError,
    InvalidRequestError,
    MatchStateError,
    NotFoundError,
    StaleWriteError,
    WriteRejectedError,
)
from chess_connect.core.models import ChangeEvent, MatchModel, ProfileModel
from chess_connect.core.shared_types import (
    MATCHES_TABLE,
    ChangeType,
    Color,
    MatchStatus,
    SessionPhase,
)
from chess_connect.db.change_feed import ChangeFeed, Subscription
from chess_connect.db.repository import MatchRepository, ProfileRepository
from chess_connect.game.board_state import BoardState
from chess_connect.game.clock import MatchClock
from chess_connect.game.match import Match
from chess_connect.services.auth import AuthProvider, AuthUser, require_user
from chess_connect.services.friendship_service import FriendshipService

logger = logging.getLogger(__name__)

_STATUS_RANK = {
    MatchStatus.WAITING: 0,
    MatchStatus.ACTIVE: 1,
    MatchStatus.COMPLETED: 2,
}

# Resignation / timeout writes are retried after a refetch when they lose a race.
COMPLETION_ATTEMPTS = 3


@dataclass
class MoveResult:
    accepted: bool
    san: Optional[str] = None
    reason: Optional[str] = None


class MatchSession:
    """Drives one match from the perspective of the signed-in player: loading -> active -> completed."""

    def __init__(
        self,
        match_id: UUID,
        auth: AuthProvider,
        matches: MatchRepository,
        profiles: ProfileRepository,
        feed: ChangeFeed,
        friendships: Optional[FriendshipService] = None,
    ) -> None:
        self.match_id = match_id
        self.auth = auth
        self.matches = matches
        self.profiles = profiles
        self.feed = feed
        self.friendships = friendships

        self.phase = SessionPhase.LOADING
        self.user: Optional[AuthUser] = None
        self.match: Optional[Match] = None
        self.board = BoardState()
        self.clock: Optional[MatchClock] = None
        self.players: dict[Color, ProfileModel] = {}
        self.my_color: Optional[Color] = None
        self.pending_move: Optional[str] = None
        self._credited_moves = 0
        self._subscription: Optional[Subscription] = None
        # snapshots delivered while the initial fetch is still being loaded
        self._early_snapshots: list[MatchModel] = []

    # --- Entry / exit ---
    def open(self) -> None:
        """
        Load the match and start listening for changes.
        ----
        Raises AuthenticationError (nobody signed in), NotFoundError (match or profile missing),
        NotAParticipantError (signed-in user does not play in it) or MatchStateError (nobody joined yet).
        """
        self.user = require_user(self.auth)
        # The feed does not replay: subscribe first so the fetch below covers everything written before it.
        self._subscription = self.feed.subscribe(MATCHES_TABLE, self.match_id, self._on_change)
        try:
            model = self._load()
        except ChessConnectError:
            self.close()
            raise

        # the clock starts fresh on every open: history earns no increments
        self._credited_moves = len(model.moves)
        self.apply_snapshot(model)
        early, self._early_snapshots = self._early_snapshots, []
        for snapshot in early:
            self.apply_snapshot(snapshot)
        logger.info(
            "Opened match %s as %s (%s moves played)",
            self.match_id,
            self.my_color,
            len(model.moves),
        )

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    # --- Reconciliation ---
    def apply_snapshot(self, model: MatchModel) -> bool:
        """
        Replace local state with an authoritative snapshot of the row.
        Snapshots that are not newer than what we hold are ignored, so receiving the same one twice is harmless.
        Returns True if local state changed.
        """
        if self.match is not None and model.version <= self.match.version:
            return False

        incoming = Match.from_model(model)
        if (
            self.match is not None
            and _STATUS_RANK[incoming.status] < _STATUS_RANK[self.match.status]
        ):
            logger.warning(
                "Ignoring snapshot of match %s moving status back from %s to %s",
                self.match_id,
                self.match.status,
                incoming.status,
            )
            return False

        self.board.sync(incoming.moves)
        self.match = incoming
        self.pending_move = None
        self._credit_increments(len(incoming.moves))
        if incoming.status == MatchStatus.COMPLETED:
            if self.phase != SessionPhase.COMPLETED:
                logger.info("Match %s completed, winner %s", self.match_id, incoming.winner_id)
            self.phase = SessionPhase.COMPLETED
            self.close()
        else:
            self.phase = SessionPhase.ACTIVE
        return True

    def refresh(self) -> None:
        """Fetch the row again and reconcile with it."""
        model = self.matches.get_match(self.match_id)
        if model is None:
            raise NotFoundError(f"Match with {self.match_id=} not found.")
        self.apply_snapshot(model)

    # --- Player actions ---
    def try_move(self, from_square: str, to_square: str) -> MoveResult:
        """
        Attempt a move for the local player.
        ----
        Not active, not our turn, or illegal: rejected, nothing recorded.
        Accepted: the move (and the end of the match, if it ends it) is written in a single versioned update.
        If the row moved on in the meantime the write is refused, we reconcile with the store and reject the move.
        """
        match = self.match
        if self.phase != SessionPhase.ACTIVE or match is None or match.status != MatchStatus.ACTIVE:
            return MoveResult(accepted=False, reason="match is not active")
        if self.pending_move is not None:
            return MoveResult(accepted=False, reason="previous move still pending")
        if self.board.side_to_move != self.my_color:
            return MoveResult(accepted=False, reason="not your turn")

        san = self.board.try_move(from_square, to_square)
        if san is None:
            return MoveResult(accepted=False, reason="illegal move")

        updated = Match.from_model(match.to_model())
        updated.record_move(san)
        if self.board.is_game_over:
            winning_color = self.board.winning_color()
            updated.complete(updated.player_of(winning_color) if winning_color else None)
        self.pending_move = san

        try:
            stored = self.matches.update_match(
                self.match_id, updated.to_model(), expected_version=match.version
            )
        except StaleWriteError:
            logger.info("Move %s on match %s raced another write, reconciling", san, self.match_id)
            self._rollback_pending()
            self.refresh()
            return MoveResult(accepted=False, reason="match changed, try again")
        except WriteRejectedError:
            self._rollback_pending()
            raise

        if stored is None:
            self._rollback_pending()
            raise NotFoundError(f"Match with {self.match_id=} not found.")
        self.apply_snapshot(stored)
        return MoveResult(accepted=True, san=san)

    def submit_move(self, request: MoveRequest) -> MoveResult:
        """Entry point for validated move requests. The request must target this session's match."""
        if request.match_id != self.match_id:
            raise InvalidRequestError(
                f"Move for match {request.match_id} sent to session of match {self.match_id}."
            )
        return self.try_move(request.from_square, request.to_square)

    def resign(self) -> None:
        """Give the win to the opponent, whatever the board says."""
        user = self._require_open()
        self._write_completion(lambda match: match.resign(user.id))
        logger.info("User %s resigned match %s", user.id, self.match_id)

    def tick(self, seconds: int = 1) -> Optional[Color]:
        """
        Advance the client-side clock for the side to move.
        Returns the color that ran out of time if this tick ended the match.
        """
        if self.phase != SessionPhase.ACTIVE or self.clock is None or self.match is None:
            return None
        turn = self.board.side_to_move
        if not self.clock.tick(turn, seconds):
            return None

        winner = self.match.player_of(turn.opposite)
        logger.info("%s ran out of time in match %s", turn, self.match_id)

        def flag(match: Match) -> None:
            # a refetch may show the flagged side already moved
            if self.board.side_to_move != turn:
                raise MatchStateError(f"{turn} moved before running out of time.")
            match.complete(winner)

        try:
            self._write_completion(flag)
        except MatchStateError:
            if self.phase == SessionPhase.COMPLETED:
                # the other client settled the match first
                return None
            if self.board.side_to_move != turn:
                logger.info("Dropping timeout of %s in match %s: move arrived first", turn, self.match_id)
                return None
            raise
        return turn

    def add_friend(self) -> FriendshipResponse:
        """Send a friend request to the opponent of this match."""
        user = self._require_open()
        if self.friendships is None or self.match is None:
            raise MatchStateError("Friend requests are not available in this session.")
        opponent = self.match.opponent_of(user.id)
        return self.friendships.send_request(FriendRequest(user_id=user.id, friend_id=opponent))

    # --- Queries ---
    @property
    def is_my_turn(self) -> bool:
        return (
            self.phase == SessionPhase.ACTIVE
            and self.pending_move is None
            and self.board.side_to_move == self.my_color
        )

    @property
    def opponent(self) -> Optional[ProfileModel]:
        if self.my_color is None:
            return None
        return self.players.get(self.my_color.opposite)

    def response(self) -> MatchResponse:
        if self.match is None or self.match.id is None:
            raise MatchStateError("Session is not loaded.")
        return MatchResponse(
            match_id=self.match.id,
            player_one_id=self.match.player_one_id,
            player_two_id=self.match.player_two_id,
            status=self.match.status,
            moves=list(self.match.moves),
            winner_id=self.match.winner_id,
            time_control=self.match.time_control.key,
            version=self.match.version,
        )

    # -- PRIVATE HELPERS ---
    def _load(self) -> MatchModel:
        assert self.user is not None
        model = self.matches.get_match(self.match_id)
        if model is None:
            raise NotFoundError(f"Match with {self.match_id=} not found.")

        match = Match.from_model(model)
        if match.status == MatchStatus.WAITING:
            raise MatchStateError("Match has not started yet: still waiting for an opponent.")
        self.my_color = match.color_of(self.user.id)

        for color in (Color.WHITE, Color.BLACK):
            player = match.player_of(color)
            profile = self.profiles.get_profile(player) if player else None
            if profile is None:
                raise NotFoundError(f"Profile of {color} player {player!r} not found.")
            self.players[color] = profile

        self.clock = MatchClock(match.time_control)
        return model

    def _on_change(self, event: ChangeEvent) -> None:
        if event.change_type == ChangeType.DELETE or event.new is None:
            logger.warning("Match %s was deleted while a session was open", self.match_id)
            return
        if self.phase == SessionPhase.LOADING:
            self._early_snapshots.append(event.new)
            return
        self.apply_snapshot(event.new)

    def _require_open(self) -> AuthUser:
        if self.user is None or self.match is None:
            raise MatchStateError("Session is not loaded.")
        return self.user

    def _rollback_pending(self) -> None:
        self.pending_move = None
        if self.match is not None:
            self.board.sync(self.match.moves)

    def _credit_increments(self, total_moves: int) -> None:
        """Every move played since we last looked earns its mover the increment."""
        if self.clock is None:
            return
        for index in range(self._credited_moves, total_moves):
            mover = Color.WHITE if index % 2 == 0 else Color.BLACK
            self.clock.add_increment(mover)
        self._credited_moves = max(self._credited_moves, total_moves)

    def _write_completion(self, finish: Callable[[Match], None]) -> None:
        """Write a status change that does not depend on the board, refetching if another write got there first."""
        for _ in range(COMPLETION_ATTEMPTS):
            if self.match is None:
                raise MatchStateError("Session is not loaded.")
            current = self.match
            updated = Match.from_model(current.to_model())
            finish(updated)
            try:
                stored = self.matches.update_match(
                    self.match_id, updated.to_model(), expected_version=current.version
                )
            except StaleWriteError:
                self.refresh()
                continue
            if stored is None:
                raise NotFoundError(f"Match with {self.match_id=} not found.")
            self.apply_snapshot(stored)
            return
        raise WriteRejectedError()
