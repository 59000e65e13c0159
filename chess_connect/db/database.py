"""Generate database engine and sessions"""

from functools import lru_cache
from typing import Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from chess_connect.core.config import get_settings
from chess_connect.db.schema import Base


def make_engine(url: str, echo: bool = False) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=echo, connect_args=connect_args)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False)


def init_db(engine: Engine) -> None:
    """Ensure all tables are created"""
    Base.metadata.create_all(bind=engine)


@lru_cache
def _default_session_factory() -> sessionmaker[Session]:
    settings = get_settings()
    engine = make_engine(settings.database_url, echo=settings.sql_echo)
    init_db(engine)
    return make_session_factory(engine)


def get_db() -> Generator[Session, None, None]:
    """Session on the configured database, closed when the caller is done with it."""
    db = _default_session_factory()()
    try:
        yield db
    finally:
        db.close()
