"""Time control descriptors, written as '<minutes>+<increment seconds>' (e.g. '10+10')."""

from dataclasses import dataclass
from typing import Self

from chess_connect.core.exceptions import InvalidRequestError


@dataclass(frozen=True)
class TimeControl:
    initial_seconds: int
    increment_seconds: int

    @property
    def key(self) -> str:
        return f"{self.initial_seconds // 60}+{self.increment_seconds}"

    @classmethod
    def parse(cls, key: str) -> Self:
        parts = key.strip().split("+")
        if len(parts) != 2 or not all(part.isdigit() for part in parts):
            raise InvalidRequestError(
                f"Cannot interpret time control {key!r}. Expected '<minutes>+<increment>'."
            )
        minutes, increment = (int(part) for part in parts)
        if minutes == 0:
            raise InvalidRequestError(f"Time control {key!r} has no base time.")
        return cls(initial_seconds=minutes * 60, increment_seconds=increment)
