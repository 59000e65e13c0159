"""Authenticated-user lookup. Sign-in itself is handled by the external auth provider."""

from dataclasses import dataclass
from typing import Optional, Protocol

from chess_connect.core.exceptions import AuthenticationError


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str


class AuthProvider(Protocol):
    def get_user(self) -> Optional[AuthUser]:
        """User of the current session, if anybody is signed in."""
        ...

    def sign_out(self) -> None: ...


def require_user(auth: AuthProvider) -> AuthUser:
    user = auth.get_user()
    if user is None:
        raise AuthenticationError("You need to sign in first.")
    return user
