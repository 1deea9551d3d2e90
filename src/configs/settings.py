"""Centralized settings management for the event ingestion pipeline."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from urllib.parse import unquote, urlparse

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings powered by pydantic-settings.

    Loads configuration from environment variables and a .env file located
    at the project root.
    """

    # -------------------------------------------------------------------------
    # ENVIRONMENT
    # -------------------------------------------------------------------------
    ENV: str = "development"
    DEBUG: bool = False

    # -------------------------------------------------------------------------
    # DATABASE
    # -------------------------------------------------------------------------
    DATABASE_URL: str | None = None
    DB_POOL_MIN: int = 1
    DB_POOL_MAX: int = 5

    # -------------------------------------------------------------------------
    # FETCH SERVICE
    # -------------------------------------------------------------------------
    FIRECRAWL_API_KEY: SecretStr | None = None
    FIRECRAWL_BASE_URL: str = "https://api.firecrawl.dev"
    FETCH_TIMEOUT_S: float = 60.0
    CRAWL_TIMEOUT_S: float = 90.0

    # -------------------------------------------------------------------------
    # COMPLETION & EMBEDDING SERVICES
    # -------------------------------------------------------------------------
    OPENAI_API_KEY: SecretStr | None = None
    COMPLETION_MODEL: str = "gpt-4o-mini"
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    COMPLETION_TIMEOUT_S: float = 45.0

    # -------------------------------------------------------------------------
    # RATE LIMITING
    # -------------------------------------------------------------------------
    RATE_LIMIT_MIN_INTERVAL_S: float = 8.0
    RATE_LIMIT_GENTLE_INTERVAL_S: float = 12.0
    RATE_LIMIT_MAX_REQUESTS: int = 50
    GENTLE_SOURCE_KEYWORDS: list[str] = Field(
        default_factory=lambda: ["kudyznudy", "czech", "praha", "brno"]
    )
    # JSON object in the environment, e.g. {"Kudy z nudy": 15.0}
    RATE_LIMIT_SOURCE_OVERRIDES: dict[str, float] = Field(default_factory=dict)

    # -------------------------------------------------------------------------
    # EXTRACTION
    # -------------------------------------------------------------------------
    CHUNK_SIZE: int = 20000
    CHUNK_OVERLAP: int = 1000
    MIN_EVENTS_EARLY_STOP: int = 10

    # -------------------------------------------------------------------------
    # DEDUPLICATION
    # -------------------------------------------------------------------------
    DEDUP_SIMILARITY_THRESHOLD: float = Field(default=0.85, ge=0.0, le=1.0)
    DEDUP_TOP_K: int = Field(default=5, ge=1)
    DEDUP_DATE_WINDOW_DAYS: int | None = 0

    # -------------------------------------------------------------------------
    # ORCHESTRATION
    # -------------------------------------------------------------------------
    SOURCE_CONCURRENCY: int = 3
    UPSERT_BATCH_SIZE: int = 100

    # -------------------------------------------------------------------------
    # MONITORING
    # -------------------------------------------------------------------------
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # -------------------------------------------------------------------------
    # PATHS
    # -------------------------------------------------------------------------
    # BASE_DIR points to the project root
    BASE_DIR: Path = Path(__file__).resolve().parents[2]
    INGESTION_CONFIG_PATH: Path = BASE_DIR / "src" / "configs" / "ingestion.yaml"

    # -------------------------------------------------------------------------
    # CONFIGURATION
    # -------------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        # Allow extra fields in .env but ignore them in the model
        extra="ignore",
    )

    def get_psycopg2_params(self) -> dict:
        """
        Parse DATABASE_URL into psycopg2-compatible connection parameters.

        Returns
        -------
        dict
            psycopg2 connection arguments (host, port, dbname, user, password).

        Raises
        ------
        ValueError
            If DATABASE_URL is not configured.
        """
        if not self.DATABASE_URL:
            raise ValueError("DATABASE_URL is not configured")

        url = urlparse(self.DATABASE_URL)
        return {
            "host": url.hostname,
            "port": url.port or 5432,
            "dbname": url.path.lstrip("/") or None,
            "user": unquote(url.username) if url.username else None,
            "password": unquote(url.password) if url.password else None,
        }

    def secret(self, name: str) -> str | None:
        """Return the plain value of a SecretStr setting, or None when unset."""
        value = getattr(self, name)
        return value.get_secret_value() if value else None


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns
    -------
    Settings
        The singleton settings instance.
    """
    return Settings()
