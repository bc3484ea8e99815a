"""Application settings read from the environment (and a local .env file)."""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """
    Runtime configuration.

    Attributes:
        database_url: SQLAlchemy connection URL
        weekly_analysis_limit: Analyses allowed per rolling window
        quota_window_days: Length of the rolling quota window in days
        quota_cas_attempts: Compare-and-swap attempts before giving up on a quota write
        default_page_size: Page size used by history listings when none is given
        log_level: Console log level
        log_dir: Optional directory for a DEBUG log file
        sql_echo: Echo SQL statements emitted by the engine
    """

    database_url: str
    weekly_analysis_limit: int = 4
    quota_window_days: int = 7
    quota_cas_attempts: int = 3
    default_page_size: int = 10
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    sql_echo: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./resume_ats.db"),
            weekly_analysis_limit=_int_env("WEEKLY_ANALYSIS_LIMIT", 4),
            quota_window_days=_int_env("QUOTA_WINDOW_DAYS", 7),
            quota_cas_attempts=_int_env("QUOTA_CAS_ATTEMPTS", 3),
            default_page_size=_int_env("DEFAULT_PAGE_SIZE", 10),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_dir=os.getenv("LOG_DIR") or None,
            sql_echo=_bool_env("SQL_ECHO", False),
        )


settings = Settings.from_env()
