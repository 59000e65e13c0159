"""Environment configuration and logging setup."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment variables."""

    database_url: str = "sqlite:///chess_connect.db"
    sql_echo: bool = False
    log_level: str = "INFO"
    search_timeout_seconds: int = 60
    matchmaking_attempts: int = 3
    default_time_control: str = "10+10"
    default_rating: int = 1200

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings, falling back to defaults for anything unset."""
        settings = cls(
            database_url=os.getenv("CHESS_CONNECT_DATABASE_URL", cls.database_url),
            sql_echo=_env_bool("CHESS_CONNECT_SQL_ECHO"),
            log_level=os.getenv("CHESS_CONNECT_LOG_LEVEL", cls.log_level).upper(),
            search_timeout_seconds=_env_int(
                "CHESS_CONNECT_SEARCH_TIMEOUT", cls.search_timeout_seconds
            ),
            matchmaking_attempts=_env_int(
                "CHESS_CONNECT_MATCHMAKING_ATTEMPTS", cls.matchmaking_attempts
            ),
            default_time_control=os.getenv(
                "CHESS_CONNECT_TIME_CONTROL", cls.default_time_control
            ),
            default_rating=_env_int("CHESS_CONNECT_DEFAULT_RATING", cls.default_rating),
        )
        if settings.search_timeout_seconds <= 0:
            raise ValueError("CHESS_CONNECT_SEARCH_TIMEOUT must be positive")
        if settings.matchmaking_attempts <= 0:
            raise ValueError("CHESS_CONNECT_MATCHMAKING_ATTEMPTS must be positive")
        return settings


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


def configure_logging(level: str | None = None) -> None:
    """
    Application hook: call once at process start, before using the services.
    Library modules only ever log through `logging.getLogger(__name__)`.
    """
    logging.basicConfig(
        level=level or get_settings().log_level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )
