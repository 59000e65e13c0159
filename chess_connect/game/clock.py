"""
Client-side chess clock.

The clock only runs while a session is open: the caller feeds it elapsed seconds, attributed to whichever color the rules engine says is to move.
"""

from typing import Optional

from chess_connect.core.shared_types import Color
from chess_connect.game.time_control import TimeControl


class MatchClock:
    def __init__(self, time_control: TimeControl) -> None:
        self.time_control = time_control
        self.remaining: dict[Color, int] = {
            Color.WHITE: time_control.initial_seconds,
            Color.BLACK: time_control.initial_seconds,
        }

    def tick(self, color: Color, seconds: int = 1) -> bool:
        """Spend time from `color`'s clock. Returns True if that color has run out."""
        if seconds < 0:
            raise ValueError("Cannot tick a negative amount of time.")
        self.remaining[color] = max(0, self.remaining[color] - seconds)
        return self.remaining[color] == 0

    def add_increment(self, color: Color) -> None:
        """Time-increment rule: the mover gets the bonus after each accepted move."""
        self.remaining[color] += self.time_control.increment_seconds

    def flagged_color(self) -> Optional[Color]:
        for color in (Color.WHITE, Color.BLACK):
            if self.remaining[color] == 0:
                return color
        return None

    def format(self, color: Color) -> str:
        minutes, seconds = divmod(self.remaining[color], 60)
        return f"{minutes}:{seconds:02d}"
