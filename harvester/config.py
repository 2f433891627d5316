"""Application configuration via Pydantic Settings."""

from typing import Tuple
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global harvester settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Run defaults (CLI flags override these per run)
    CONCURRENCY: int = 3
    MAX_ATTEMPTS: int = 5
    MAX_ITEMS: int = 1000
    OUTPUT_DIR: str = "harvest-output"
    RESUME_MAX_AGE_HOURS: float = 24.0
    TARGETS_FILE: str = ""  # Empty string uses the packaged curated targets

    # Browser
    HEADLESS: bool = True
    NAVIGATION_TIMEOUT_MS: int = 30000
    SCROLL_CYCLES: int = 3

    # Circuit breaker
    FAILURE_THRESHOLD: int = 5
    RECOVERY_TIMEOUT_SECONDS: float = 300.0

    # Retry backoff between attempts on one target
    BACKOFF_BASE_SECONDS: float = 1.0
    BACKOFF_MAX_SECONDS: float = 30.0
    BACKOFF_JITTER: float = 0.3

    # Adaptive rate limiter
    FAST_RESPONSE_MS: int = 2000
    SLOW_RESPONSE_MS: int = 5000

    # Strategy selection
    HISTORY_WINDOW: int = 20
    BUSINESS_HOURS_START: int = 9
    BUSINESS_HOURS_END: int = 17  # Inclusive hour

    # Strategies
    HUMAN_DELAY_MIN_SECONDS: float = 1.0
    HUMAN_DELAY_MAX_SECONDS: float = 4.0
    HYBRID_MIN_VIABLE_ITEMS: int = 10
    STRATEGY_ITEM_CAP: int = 100
    SITEMAP_DETAIL_PAGES: int = 5

    # Pipeline
    MIN_QUALITY_SCORE: int = 6

    # External catalog ingest
    # An empty CATALOG_INGEST_URL keeps the catalog on disk only.
    CATALOG_INGEST_URL: str = ""
    INGEST_API_KEY: str = ""

    LOG_LEVEL: str = "INFO"

    @model_validator(mode="after")
    def check_ranges(self) -> "Settings":
        """Reject settings that would make the run loop meaningless."""
        if self.CONCURRENCY < 1:
            raise ValueError("CONCURRENCY must be at least 1")
        if self.MAX_ATTEMPTS < 1:
            raise ValueError("MAX_ATTEMPTS must be at least 1")
        if self.HUMAN_DELAY_MIN_SECONDS > self.HUMAN_DELAY_MAX_SECONDS:
            raise ValueError("HUMAN_DELAY_MIN_SECONDS must not exceed HUMAN_DELAY_MAX_SECONDS")
        return self

    def get_human_delay_range(self) -> Tuple[float, float]:
        """Return the (min, max) human-like pause in seconds."""
        return self.HUMAN_DELAY_MIN_SECONDS, self.HUMAN_DELAY_MAX_SECONDS


settings = Settings()
