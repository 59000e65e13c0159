"""
Exceptions raised across layers.

Every custom exception derives from ChessConnectError so that callers (UI/API) can catch the whole family at once.
"""


class ChessConnectError(Exception):
    """Top-level exception for this package."""


class AuthenticationError(ChessConnectError):
    """No authenticated user for the current session."""


class InvalidRequestError(ChessConnectError):
    """A request model did not pass validation."""


# --- Persistence ---
class RepositoryError(ChessConnectError):
    """Something went wrong while talking to the data store."""


class NotFoundError(RepositoryError):
    """Requested record (match/profile/friendship) does not exist."""


class WriteRejectedError(RepositoryError):
    """The data store refused a write. Message is safe to show to a user."""

    def __init__(self, message: str = "Could not save your changes. Please try again.") -> None:
        super().__init__(message)


class StaleWriteError(RepositoryError):
    """The row changed since it was read: expected version does not match the stored one."""

    def __init__(self, expected_version: int, stored_version: int) -> None:
        super().__init__(
            f"Expected version {expected_version}, but record is at version {stored_version}."
        )
        self.expected_version = expected_version
        self.stored_version = stored_version


class DuplicateFriendshipError(RepositoryError):
    """A friendship row already exists for this pair of users."""


# --- Match domain ---
class MatchError(ChessConnectError):
    """Base class for errors raised by the match domain."""


class MatchStateError(MatchError):
    """Operation not allowed in the match's current status."""


class NotAParticipantError(MatchError):
    """User is not one of the two players of the match."""


class PermissionDeniedError(ChessConnectError):
    """User is signed in, but may not act on this record."""
