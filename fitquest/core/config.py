import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: Optional[str] = "sqlite:///./fitquest.db"
    TEST_DATABASE_URL: Optional[str] = None
    DB_ECHO: bool = False

    # Transaction retries (optimistic concurrency)
    TXN_MAX_ATTEMPTS: int = 5
    TXN_RETRY_MIN_WAIT_SECONDS: float = 0.05
    TXN_RETRY_MAX_WAIT_SECONDS: float = 1.0

    # Read views
    LEADERBOARD_DEFAULT_LIMIT: int = 10
    LEADERBOARD_MAX_LIMIT: int = 100
    WORKOUT_HISTORY_LIMIT: int = 50

    # XP credit reconciliation
    XP_CREDIT_MAX_ATTEMPTS: int = 10

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing or unsafe keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("fitquest")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    problems = []
    if not getattr(cfg, "DATABASE_URL", None):
        problems.append("Missing required configuration: DATABASE_URL")

    env = (getattr(cfg, "ENV", "development") or "development").lower()
    if env == "production":
        url = getattr(cfg, "DATABASE_URL", None) or ""
        if url.startswith("sqlite"):
            problems.append("DATABASE_URL must not point at SQLite in production")
        if getattr(cfg, "TEST_DATABASE_URL", None):
            problems.append("TEST_DATABASE_URL must not be set in production")

    if getattr(cfg, "TXN_MAX_ATTEMPTS", 1) < 1:
        problems.append("TXN_MAX_ATTEMPTS must be >= 1")
    if getattr(cfg, "TXN_RETRY_MIN_WAIT_SECONDS", 0) > getattr(cfg, "TXN_RETRY_MAX_WAIT_SECONDS", 0):
        problems.append("TXN_RETRY_MIN_WAIT_SECONDS cannot exceed TXN_RETRY_MAX_WAIT_SECONDS")

    if problems:
        message = "; ".join(problems)
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
