"""
Pytest will auto-discover / import this file called 'conftest.py'.
This file defines fixtures/variables required for testing multiple layers.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Generator, Optional

import pytest
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

from chess_connect.core.config import Settings
from chess_connect.core.models import ProfileModel
from chess_connect.db.change_feed import InMemoryChangeFeed
from chess_connect.db.schema import Base
from chess_connect.db.sql_repository import (
    SQLFriendshipRepository,
    SQLMatchRepository,
    SQLProfileRepository,
)
from chess_connect.services.auth import AuthUser

# Setup an in-memory SQLite database for testing
DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autoflush=False, bind=engine)

START_TIME = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Stand-in for utc_now that only moves when told to."""

    def __init__(self, start: datetime = START_TIME) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: int) -> None:
        self.current += timedelta(seconds=seconds)


class FakeAuth:
    """Mock the external auth provider: a fixed user until signed out."""

    def __init__(self, user: Optional[AuthUser]) -> None:
        self.user = user

    def get_user(self) -> Optional[AuthUser]:
        return self.user

    def sign_out(self) -> None:
        self.user = None


@pytest.fixture
def db_session_repo() -> Generator[Session, None, None]:
    """Connection to a test database. Tables are removed at teardown to make tests independent of each other."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def feed() -> InMemoryChangeFeed:
    return InMemoryChangeFeed()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(search_timeout_seconds=60, matchmaking_attempts=3)


@pytest.fixture
def match_repo(db_session_repo: Session, feed: InMemoryChangeFeed) -> SQLMatchRepository:
    return SQLMatchRepository(db_session_repo, feed)


@pytest.fixture
def profile_repo(db_session_repo: Session) -> SQLProfileRepository:
    return SQLProfileRepository(db_session_repo)


@pytest.fixture
def friendship_repo(db_session_repo: Session) -> SQLFriendshipRepository:
    return SQLFriendshipRepository(db_session_repo)


@pytest.fixture
def make_auth() -> Callable[[str], FakeAuth]:
    def _make(user_id: str) -> FakeAuth:
        return FakeAuth(AuthUser(id=user_id, email=f"{user_id}@example.com"))

    return _make


@pytest.fixture
def add_profile(profile_repo: SQLProfileRepository) -> Callable[[str], ProfileModel]:
    def _add(user_id: str) -> ProfileModel:
        return profile_repo.create_profile(
            ProfileModel(
                id=user_id,
                email=f"{user_id}@example.com",
                username=user_id,
                rating=1200,
            )
        )

    return _add
