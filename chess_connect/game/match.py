"""
The Match class is the entrypoint into the domain layer for the service layer.
It owns the lifecycle rules of a match row (who may join, when moves may be recorded, how it ends)
and hands the result back to the service layer as a MatchModel.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Self
from uuid import UUID

from chess_connect.core.exceptions import MatchStateError, NotAParticipantError
from chess_connect.core.models import MatchModel
from chess_connect.core.shared_types import ALLOWED_TRANSITIONS, Color, MatchStatus
from chess_connect.game.time_control import TimeControl


@dataclass
class Match:
    # --- DOMAIN LAYER API CALLED BY SERVICE---

    player_one_id: str
    status: MatchStatus
    time_control: TimeControl
    moves: list[str] = field(default_factory=list)
    player_two_id: Optional[str] = None
    winner_id: Optional[str] = None
    id: Optional[UUID] = None
    version: int = 0
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, model: MatchModel) -> Self:
        """Define how to construct a Match from the information the Service layer actually has"""
        if model.status not in MatchStatus.__members__.values():
            raise MatchStateError(
                f"Invalid status: {model.status!r}. \nPick one from {','.join(MatchStatus)}"
            )
        return cls(
            player_one_id=model.player_one_id,
            status=MatchStatus(model.status),
            time_control=TimeControl.parse(model.time_control),
            moves=list(model.moves),
            player_two_id=model.player_two_id,
            winner_id=model.winner_id,
            id=model.id,
            version=model.version,
            expires_at=model.expires_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def to_model(self) -> MatchModel:
        """Encode back into a format the Service layer uses"""
        return MatchModel(
            player_one_id=self.player_one_id,
            status=self.status.value,
            time_control=self.time_control.key,
            moves=list(self.moves),
            player_two_id=self.player_two_id,
            winner_id=self.winner_id,
            id=self.id,
            version=self.version,
            expires_at=self.expires_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def new_search(
        cls, player: str, time_control: TimeControl, expires_at: datetime
    ) -> Self:
        """The first searching player opens a match and waits for an opponent until `expires_at`."""
        return cls(
            player_one_id=player,
            status=MatchStatus.WAITING,
            time_control=time_control,
            expires_at=expires_at,
        )

    # --- Lifecycle ---
    def pair(self, player: str) -> None:
        """Registering the 2nd player to a waiting match"""
        if self.status != MatchStatus.WAITING:
            raise MatchStateError(
                f"Cannot join this match. It is not waiting for players. status: {self.status}"
            )
        if self.player_two_id is not None:
            raise MatchStateError("Cannot join this match. Second player already set.")
        if player == self.player_one_id:
            raise MatchStateError("Cannot join your own match.")
        self.player_two_id = player
        self.expires_at = None
        self._change_status(MatchStatus.ACTIVE)

    def record_move(self, san: str) -> None:
        """Moves are append-only and only while the match is being played."""
        if self.status != MatchStatus.ACTIVE:
            raise MatchStateError(f"Match is not active. status: {self.status}")
        self.moves.append(san)

    def complete(self, winner_id: Optional[str]) -> None:
        """End the match. A winner of None records a draw."""
        if winner_id is not None and winner_id not in self.participants:
            raise NotAParticipantError(f"{winner_id!r} did not play in this match.")
        self._change_status(MatchStatus.COMPLETED)
        self.winner_id = winner_id

    def resign(self, player: str) -> None:
        """Resigning hands the win to the other player, regardless of the board."""
        self.complete(self.opponent_of(player))

    # --- Queries ---
    @property
    def participants(self) -> tuple[str, ...]:
        if self.player_two_id is None:
            return (self.player_one_id,)
        return (self.player_one_id, self.player_two_id)

    def color_of(self, player: str) -> Color:
        """Player one always has the white pieces."""
        if player == self.player_one_id:
            return Color.WHITE
        if player == self.player_two_id:
            return Color.BLACK
        raise NotAParticipantError(f"{player!r} is not playing in this match.")

    def player_of(self, color: Color) -> Optional[str]:
        return self.player_one_id if color == Color.WHITE else self.player_two_id

    def opponent_of(self, player: str) -> str:
        opponent = self.player_of(self.color_of(player).opposite)
        if opponent is None:
            raise MatchStateError("Match has no opponent yet.")
        return opponent

    def is_expired(self, now: datetime) -> bool:
        return (
            self.status == MatchStatus.WAITING
            and self.expires_at is not None
            and self.expires_at <= now
        )

    # -- PRIVATE HELPERS ---
    def _change_status(self, new_status: MatchStatus) -> None:
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise MatchStateError(
                f"Cannot move match from {self.status!r} to {new_status!r}."
            )
        self.status = new_status
