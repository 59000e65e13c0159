"""Unit tests for chess_connect/services/session_service.py"""

from typing import Callable, Optional
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from chess_connect.api.models import MoveRequest, SearchRequest
from chess_connect.core.config import Settings
from chess_connect.core.exceptions import (
    AuthenticationError,
    DuplicateFriendshipError,
    InvalidRequestError,
    MatchStateError,
    NotAParticipantError,
    NotFoundError,
)
from chess_connect.core.models import MatchModel, ProfileModel
from chess_connect.core.shared_types import (
    MATCHES_TABLE,
    Color,
    FriendshipStatus,
    MatchStatus,
    SessionPhase,
)
from chess_connect.db.change_feed import InMemoryChangeFeed
from chess_connect.db.sql_repository import (
    SQLFriendshipRepository,
    SQLMatchRepository,
    SQLProfileRepository,
)
from chess_connect.game.board_state import BoardState
from chess_connect.services.friendship_service import FriendshipService
from chess_connect.services.matchmaking_service import MatchmakingService
from chess_connect.services.session_service import MatchSession
from conftest import FakeAuth, FrozenClock

SCHOLARS_MATE = [
    ("e2", "e4"),
    ("e7", "e5"),
    ("f1", "c4"),
    ("b8", "c6"),
    ("d1", "h5"),
    ("g8", "f6"),
    ("h5", "f7"),
]


@pytest.fixture
def active_match_id(
    match_repo: SQLMatchRepository,
    feed: InMemoryChangeFeed,
    settings: Settings,
    clock: FrozenClock,
    add_profile: Callable[[str], ProfileModel],
) -> UUID:
    """alice (white) and bob (black) paired through matchmaking."""
    add_profile("alice")
    add_profile("bob")
    service = MatchmakingService(match_repo, feed, settings=settings, now=clock)
    service.search(SearchRequest(user_id="alice"))
    return service.search(SearchRequest(user_id="bob")).match_id


@pytest.fixture
def open_session(
    match_repo: SQLMatchRepository,
    profile_repo: SQLProfileRepository,
    friendship_repo: SQLFriendshipRepository,
    feed: InMemoryChangeFeed,
    make_auth: Callable[[str], FakeAuth],
) -> Callable[[UUID, str], MatchSession]:
    def _open(match_id: UUID, user_id: str) -> MatchSession:
        session = MatchSession(
            match_id,
            make_auth(user_id),
            match_repo,
            profile_repo,
            feed,
            friendships=FriendshipService(friendship_repo),
        )
        session.open()
        return session

    return _open


@pytest.fixture
def white(open_session, active_match_id: UUID) -> MatchSession:
    return open_session(active_match_id, "alice")


@pytest.fixture
def black(open_session, active_match_id: UUID) -> MatchSession:
    return open_session(active_match_id, "bob")


def stored_status(match_repo: SQLMatchRepository, match_id: UUID) -> tuple[str, str | None]:
    match = match_repo.get_match(match_id)
    assert match is not None
    return match.status, match.winner_id


class InterleavingRepository(SQLMatchRepository):
    """Runs `interleave` once, right after the first read of a match has returned."""

    def __init__(
        self, db_session: Session, feed: InMemoryChangeFeed, interleave: Optional[Callable[[], object]]
    ) -> None:
        super().__init__(db_session, feed)
        self.interleave = interleave

    def get_match(self, match_id: UUID) -> MatchModel | None:
        match = super().get_match(match_id)
        if self.interleave is not None:
            interleave, self.interleave = self.interleave, None
            interleave()
        return match


# --- Opening a session ---
def test_open_determines_colors(white: MatchSession, black: MatchSession) -> None:
    assert white.phase == SessionPhase.ACTIVE
    assert white.my_color == Color.WHITE
    assert black.my_color == Color.BLACK
    assert white.is_my_turn
    assert not black.is_my_turn
    assert white.opponent is not None and white.opponent.id == "bob"


def test_open_requires_sign_in(
    active_match_id: UUID,
    match_repo: SQLMatchRepository,
    profile_repo: SQLProfileRepository,
    feed: InMemoryChangeFeed,
) -> None:
    session = MatchSession(active_match_id, FakeAuth(None), match_repo, profile_repo, feed)
    with pytest.raises(AuthenticationError):
        session.open()
    assert session.phase == SessionPhase.LOADING


def test_open_unknown_match(open_session, add_profile) -> None:
    add_profile("alice")
    with pytest.raises(NotFoundError):
        open_session(uuid4(), "alice")


def test_open_as_outsider(open_session, active_match_id: UUID) -> None:
    with pytest.raises(NotAParticipantError):
        open_session(active_match_id, "mallory")


def test_open_waiting_match(
    open_session,
    match_repo: SQLMatchRepository,
    feed: InMemoryChangeFeed,
    settings: Settings,
    clock: FrozenClock,
    add_profile,
) -> None:
    add_profile("alice")
    service = MatchmakingService(match_repo, feed, settings=settings, now=clock)
    response = service.search(SearchRequest(user_id="alice"))
    with pytest.raises(MatchStateError):
        open_session(response.match_id, "alice")


def test_open_with_missing_profile(
    open_session,
    match_repo: SQLMatchRepository,
    feed: InMemoryChangeFeed,
    settings: Settings,
    clock: FrozenClock,
    add_profile,
) -> None:
    add_profile("alice")
    service = MatchmakingService(match_repo, feed, settings=settings, now=clock)
    service.search(SearchRequest(user_id="alice"))
    match_id = service.search(SearchRequest(user_id="ghost")).match_id
    with pytest.raises(NotFoundError):
        open_session(match_id, "alice")


def test_open_replays_stored_moves(white: MatchSession, open_session, active_match_id: UUID) -> None:
    white.try_move("e2", "e4")
    late = open_session(active_match_id, "bob")
    assert late.board.moves == ["e4"]
    assert late.is_my_turn


# --- Moves ---
def test_accepted_move_is_appended_and_propagated(
    white: MatchSession, black: MatchSession, match_repo: SQLMatchRepository, active_match_id: UUID
) -> None:
    result = white.try_move("e2", "e4")

    assert result.accepted
    assert result.san == "e4"
    stored = match_repo.get_match(active_match_id)
    assert stored is not None and stored.moves == ["e4"]
    assert white.pending_move is None
    assert black.board.moves == ["e4"]
    assert black.is_my_turn
    assert not white.is_my_turn


def test_moves_only_grow(white: MatchSession, black: MatchSession) -> None:
    history: list[list[str]] = []
    for session, (from_square, to_square) in zip(
        [white, black, white, black], [("e2", "e4"), ("e7", "e5"), ("g1", "f3"), ("b8", "c6")]
    ):
        assert session.try_move(from_square, to_square).accepted
        assert session.match is not None
        history.append(list(session.match.moves))

    for before, after in zip(history, history[1:]):
        assert len(after) == len(before) + 1
        assert after[: len(before)] == before


def test_move_out_of_turn_is_rejected(white: MatchSession, black: MatchSession) -> None:
    result = black.try_move("e7", "e5")
    assert not result.accepted
    assert black.board.moves == []
    assert black.match is not None and black.match.moves == []


def test_moving_opponents_pieces_is_rejected(white: MatchSession) -> None:
    result = white.try_move("e7", "e5")
    assert not result.accepted
    assert white.board.moves == []


def test_illegal_move_is_silently_rejected(white: MatchSession, match_repo: SQLMatchRepository, active_match_id: UUID) -> None:
    fen_before = white.board.fen
    result = white.try_move("e2", "e5")
    assert not result.accepted
    assert white.board.fen == fen_before
    stored = match_repo.get_match(active_match_id)
    assert stored is not None and stored.moves == [] and stored.version == 1


def test_stale_move_is_reconciled(
    white: MatchSession, match_repo: SQLMatchRepository, active_match_id: UUID
) -> None:
    """Another write slipped in unnoticed: our move is refused and we pick up the stored row."""
    white.close()
    stored = match_repo.get_match(active_match_id)
    assert stored is not None
    match_repo.update_match(active_match_id, stored, expected_version=stored.version)

    result = white.try_move("e2", "e4")
    assert not result.accepted
    assert white.match is not None and white.match.version == stored.version + 1
    assert white.board.moves == []
    assert white.pending_move is None

    retry = white.try_move("e2", "e4")
    assert retry.accepted


def test_checkmate_completes_match(
    white: MatchSession, black: MatchSession, match_repo: SQLMatchRepository, active_match_id: UUID
) -> None:
    """White mates: player one (white) is recorded as winner and nobody can move anymore."""
    for index, (from_square, to_square) in enumerate(SCHOLARS_MATE):
        session = white if index % 2 == 0 else black
        assert session.try_move(from_square, to_square).accepted

    assert stored_status(match_repo, active_match_id) == (MatchStatus.COMPLETED, "alice")
    assert white.phase == SessionPhase.COMPLETED
    assert black.phase == SessionPhase.COMPLETED
    assert not black.try_move("e8", "f7").accepted

    stored = match_repo.get_match(active_match_id)
    assert stored is not None
    assert BoardState.from_moves(stored.moves).is_checkmate


# --- Reconciliation ---
def test_same_snapshot_twice_changes_nothing(
    white: MatchSession, match_repo: SQLMatchRepository, active_match_id: UUID
) -> None:
    white.try_move("e2", "e4")
    snapshot = match_repo.get_match(active_match_id)
    assert snapshot is not None

    assert not white.apply_snapshot(snapshot)
    assert not white.apply_snapshot(snapshot)
    assert white.board.moves == ["e4"]
    assert white.match is not None and white.match.moves == ["e4"]


def test_old_snapshot_cannot_reopen_completed_match(
    white: MatchSession, match_repo: SQLMatchRepository, active_match_id: UUID
) -> None:
    before = match_repo.get_match(active_match_id)
    assert before is not None
    white.resign()

    assert not white.apply_snapshot(before)
    assert white.phase == SessionPhase.COMPLETED
    assert white.match is not None and white.match.status == MatchStatus.COMPLETED


# --- Resignation ---
def test_resignation_by_player_two(
    white: MatchSession, black: MatchSession, match_repo: SQLMatchRepository, active_match_id: UUID
) -> None:
    white.try_move("e2", "e4")
    black.resign()

    assert stored_status(match_repo, active_match_id) == (MatchStatus.COMPLETED, "alice")
    assert white.phase == SessionPhase.COMPLETED
    assert feed_is_quiet(white)


def test_cannot_resign_twice(white: MatchSession, black: MatchSession) -> None:
    black.resign()
    with pytest.raises(MatchStateError):
        white.resign()


def feed_is_quiet(session: MatchSession) -> bool:
    return session._subscription is None


# --- Clock ---
def test_increment_after_each_move(white: MatchSession, black: MatchSession) -> None:
    assert white.clock is not None and black.clock is not None
    white.tick(5)
    white.try_move("e2", "e4")
    assert white.clock.remaining[Color.WHITE] == 605
    assert black.clock.remaining[Color.WHITE] == 610

    black.try_move("e7", "e5")
    assert white.clock.remaining[Color.BLACK] == 610
    assert black.clock.remaining[Color.BLACK] == 610


def test_tick_spends_side_to_move(white: MatchSession) -> None:
    assert white.clock is not None
    white.tick(3)
    white.try_move("e2", "e4")
    white.tick(7)
    assert white.clock.remaining == {Color.WHITE: 607, Color.BLACK: 593}


def test_running_out_of_time_loses(
    white: MatchSession, black: MatchSession, match_repo: SQLMatchRepository, active_match_id: UUID
) -> None:
    assert white.tick(599) is None
    assert white.tick(1) == Color.WHITE

    assert stored_status(match_repo, active_match_id) == (MatchStatus.COMPLETED, "bob")
    assert black.phase == SessionPhase.COMPLETED
    # the opponent's clock notices too late: the match is already settled
    assert black.tick(600) is None


def test_timeout_after_opponent_settled(
    white: MatchSession, black: MatchSession, match_repo: SQLMatchRepository, active_match_id: UUID
) -> None:
    """Both clients detect the flag: the second completion write finds the match already completed."""
    black.close()
    assert white.tick(600) == Color.WHITE
    assert black.phase == SessionPhase.ACTIVE

    assert black.tick(600) is None
    assert black.phase == SessionPhase.COMPLETED
    assert stored_status(match_repo, active_match_id) == (MatchStatus.COMPLETED, "bob")


# --- Friends ---
def test_add_opponent_as_friend(white: MatchSession, black: MatchSession) -> None:
    response = white.add_friend()
    assert response.user_id == "alice"
    assert response.friend_id == "bob"
    assert response.status == FriendshipStatus.PENDING

    with pytest.raises(DuplicateFriendshipError):
        black.add_friend()


# --- Teardown ---
def test_close_unsubscribes(white: MatchSession, feed: InMemoryChangeFeed, active_match_id: UUID) -> None:
    assert feed.subscriber_count(MATCHES_TABLE, active_match_id) == 1
    white.close()
    white.close()
    assert feed.subscriber_count(MATCHES_TABLE, active_match_id) == 0


# --- Writes racing the initial load ---
def test_resignation_during_open_is_not_missed(
    white: MatchSession,
    db_session_repo: Session,
    feed: InMemoryChangeFeed,
    profile_repo: SQLProfileRepository,
    make_auth: Callable[[str], FakeAuth],
    active_match_id: UUID,
) -> None:
    """alice resigns after bob's session fetched the row but before it finished loading."""
    racing_repo = InterleavingRepository(db_session_repo, feed, interleave=white.resign)
    black = MatchSession(active_match_id, make_auth("bob"), racing_repo, profile_repo, feed)
    black.open()

    assert black.phase == SessionPhase.COMPLETED
    assert black.match is not None and black.match.winner_id == "bob"
    assert feed_is_quiet(black)


def test_move_during_open_is_not_missed(
    white: MatchSession,
    db_session_repo: Session,
    feed: InMemoryChangeFeed,
    profile_repo: SQLProfileRepository,
    make_auth: Callable[[str], FakeAuth],
    active_match_id: UUID,
) -> None:
    racing_repo = InterleavingRepository(
        db_session_repo, feed, interleave=lambda: white.try_move("e2", "e4")
    )
    black = MatchSession(active_match_id, make_auth("bob"), racing_repo, profile_repo, feed)
    black.open()

    assert black.board.moves == ["e4"]
    assert black.is_my_turn
    assert black.try_move("e7", "e5").accepted


def test_failed_open_leaves_no_subscription(
    open_session, feed: InMemoryChangeFeed, active_match_id: UUID
) -> None:
    with pytest.raises(NotAParticipantError):
        open_session(active_match_id, "mallory")
    assert feed.subscriber_count(MATCHES_TABLE, active_match_id) == 0


# --- Requests / responses ---
def test_submit_move_request(white: MatchSession, black: MatchSession, active_match_id: UUID) -> None:
    result = white.submit_move(MoveRequest(match_id=active_match_id, from_square="E2", to_square="e4"))
    assert result.accepted
    assert result.san == "e4"
    assert black.board.moves == ["e4"]


def test_submit_move_for_another_match(white: MatchSession) -> None:
    with pytest.raises(InvalidRequestError):
        white.submit_move(MoveRequest(match_id=uuid4(), from_square="e2", to_square="e4"))
    assert white.board.moves == []


def test_response_reflects_stored_row(white: MatchSession, active_match_id: UUID) -> None:
    white.try_move("e2", "e4")
    response = white.response()

    assert response.match_id == active_match_id
    assert response.player_one_id == "alice"
    assert response.player_two_id == "bob"
    assert response.status == MatchStatus.ACTIVE
    assert response.moves == ["e4"]
    assert response.winner_id is None
    assert response.time_control == "10+10"
    assert response.version == 2


# --- Timeout racing a move ---
def test_flag_dropped_when_move_arrived_first(
    white: MatchSession, black: MatchSession, match_repo: SQLMatchRepository, active_match_id: UUID
) -> None:
    """bob's stale view has white flagging, but white's move is already stored."""
    black.close()
    assert white.try_move("e2", "e4").accepted

    assert black.tick(600) is None
    assert black.phase == SessionPhase.ACTIVE
    assert black.board.moves == ["e4"]
    assert stored_status(match_repo, active_match_id) == (MatchStatus.ACTIVE, None)
