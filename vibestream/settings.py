from __future__ import annotations

import logging
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


DEFAULT_MANUAL_KEYWORDS = [
    "trending shorts",
    "funny shorts",
    "tech shorts",
    "news shorts",
    "bollywood shorts",
]

DEFAULT_AUTO_KEYWORDS = [
    "trending shorts",
    "viral shorts",
    "music shorts",
    "funny shorts",
    "sports shorts",
    "gaming shorts",
    "tech shorts",
    "education shorts",
    "news shorts",
]


class Settings(BaseSettings):
    """Configuration for the ingestion pipeline + API.

    Values are loaded from environment variables and `.env`.

    Notes:
    - The YouTube key accepts either YOUTUBE_API_KEY or YT_API_KEY.
    - List values (regions, keywords) are comma-separated in the environment.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    VS_DB_PATH: Path = Field(default=Path("data/vibestream.db"))
    # SQLITE (local file, default) or POSTGRES (VS_POSTGRES_DSN required)
    VS_DB_BACKEND_MODE: str = Field(default="SQLITE")
    VS_POSTGRES_DSN: str | None = Field(default=None)

    # External source
    YOUTUBE_API_KEY: str | None = Field(
        default=None,
        validation_alias=AliasChoices("YOUTUBE_API_KEY", "YT_API_KEY"),
    )
    VS_SOURCE_TIMEOUT_SEC: float = Field(default=15.0)

    # API
    VS_API_HOST: str = Field(default="0.0.0.0")
    VS_API_PORT: int = Field(default=3000)
    VS_API_CORS_ALLOW_ALL: bool = Field(default=True)

    # API logging
    VS_API_LOG_DIR: Path = Field(default=Path("_logs"))
    VS_API_LOG_LEVEL: str = Field(default="INFO")
    VS_API_LOG_ACCESS: bool = Field(default=True)
    # Timed rotation retention count (days).
    VS_API_LOG_BACKUP_COUNT: int = Field(default=14)

    # Pipeline
    VS_MAX_BATCH_ITEMS: int = Field(default=30)
    VS_WRITE_CONCURRENCY: int = Field(default=4)
    VS_SHORT_MAX_SECONDS: int = Field(default=60)
    VS_DEFAULT_REGION: str = Field(default="IN")
    VS_TRENDING_WINDOW_HOURS: int = Field(default=48)

    # Scheduled auto-fetch
    VS_SCHEDULE_ENABLED: bool = Field(default=True)
    VS_SCHEDULE_INTERVAL_SEC: int = Field(default=6 * 60 * 60)
    VS_SCHEDULE_RUN_ON_START: bool = Field(default=False)
    VS_SCHEDULE_REGIONS: str = Field(default="IN,US,GB")
    VS_SCHEDULE_KEYWORDS: str = Field(default=",".join(DEFAULT_AUTO_KEYWORDS))

    @property
    def schedule_regions(self) -> list[str]:
        return _split_csv(self.VS_SCHEDULE_REGIONS, upper=True)

    @property
    def schedule_keywords(self) -> list[str]:
        return _split_csv(self.VS_SCHEDULE_KEYWORDS)


def _split_csv(raw: str, *, upper: bool = False) -> list[str]:
    out: list[str] = []
    for part in str(raw or "").split(","):
        s = part.strip()
        if not s:
            continue
        out.append(s.upper() if upper else s)
    return out


def load_settings() -> Settings:
    s = Settings()
    if str(s.VS_DB_BACKEND_MODE or "").strip().upper() != "POSTGRES":
        # Ensure parent dir exists
        s.VS_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    return s


def log_environment_check(settings: Settings) -> None:
    """Log which credentials are configured, never their values."""

    def _mark(v: object) -> str:
        return "found" if v else "missing"

    logger.info("environment check: YOUTUBE_API_KEY=%s", _mark(settings.YOUTUBE_API_KEY))
    mode = str(settings.VS_DB_BACKEND_MODE or "SQLITE").strip().upper()
    if mode == "POSTGRES":
        logger.info("environment check: VS_POSTGRES_DSN=%s", _mark(settings.VS_POSTGRES_DSN))
    else:
        logger.info("environment check: VS_DB_PATH=%s", settings.VS_DB_PATH)
