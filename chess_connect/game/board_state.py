"""
Adapter around the external rules engine (python-chess).

The match row only stores SAN moves. The board is always reconstructed from that list,
so nothing in here is persisted.
"""

import logging
from typing import Optional

import chess

from chess_connect.core.exceptions import MatchStateError
from chess_connect.core.shared_types import Color

logger = logging.getLogger(__name__)

_ENGINE_COLOR = {chess.WHITE: Color.WHITE, chess.BLACK: Color.BLACK}


class BoardState:
    """Board reconstructed from a sequence of SAN moves."""

    def __init__(self) -> None:
        self.board = chess.Board()
        self.moves: list[str] = []

    @classmethod
    def from_moves(cls, moves: list[str]) -> "BoardState":
        state = cls()
        state.replay(moves)
        return state

    def replay(self, moves: list[str]) -> None:
        """Rebuild the board from the initial position."""
        board = chess.Board()
        for index, san in enumerate(moves):
            try:
                board.push_san(san)
            except ValueError as e:
                raise MatchStateError(
                    f"Stored move #{index + 1} {san!r} is not playable: {e}"
                ) from e
        self.board = board
        self.moves = list(moves)

    def sync(self, moves: list[str]) -> None:
        """
        Bring the board in line with `moves`.
        ----
        If `moves` strictly extends what we already know, only the new moves are pushed.
        Any other difference (shorter list, rewritten history) triggers a full replay.
        """
        if moves == self.moves:
            return
        known = len(self.moves)
        if len(moves) > known and moves[:known] == self.moves:
            for san in moves[known:]:
                try:
                    self.board.push_san(san)
                except ValueError:
                    logger.warning("Delta move %r not playable, replaying from start", san)
                    self.replay(moves)
                    return
                self.moves.append(san)
            return
        self.replay(moves)

    def try_move(self, from_square: str, to_square: str) -> Optional[str]:
        """
        Attempt a move given by its squares.
        Returns the SAN of the played move, or None if the engine refuses it (board untouched).
        Pawn promotion is always resolved to a queen.
        """
        try:
            origin = chess.parse_square(from_square)
            target = chess.parse_square(to_square)
        except ValueError:
            return None

        piece = self.board.piece_at(origin)
        promotion = None
        if (
            piece is not None
            and piece.piece_type == chess.PAWN
            and chess.square_rank(target) in (0, 7)
        ):
            promotion = chess.QUEEN
        move = chess.Move(origin, target, promotion=promotion)

        if move not in self.board.legal_moves:
            return None

        san = self.board.san(move)
        self.board.push(move)
        self.moves.append(san)
        return san

    @property
    def side_to_move(self) -> Color:
        return _ENGINE_COLOR[self.board.turn]

    @property
    def is_game_over(self) -> bool:
        return self.board.is_game_over()

    @property
    def is_checkmate(self) -> bool:
        return self.board.is_checkmate()

    def winning_color(self) -> Optional[Color]:
        """After checkmate the side left to move has lost. Any other ending has no winner."""
        if not self.board.is_checkmate():
            return None
        return self.side_to_move.opposite

    @property
    def fen(self) -> str:
        return self.board.fen()
