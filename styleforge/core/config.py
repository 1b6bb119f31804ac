"""
Application configuration using Pydantic Settings.
Loads from environment variables with sensible defaults.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "StyleForge Learning Engine"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: Literal["development", "staging", "production", "test"] = "development"

    # Database - Individual settings (recommended)
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_database: str = "styleforge"
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"

    # Full URL override (tests use sqlite+aiosqlite)
    database_url_override: Optional[str] = None

    # Database pool settings
    database_pool_size: int = 20
    database_max_overflow: int = 10

    @property
    def database_url(self) -> str:
        """Build database URL from individual components."""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_database}"

    # Redis
    redis_url: RedisDsn = Field(default="redis://localhost:6379/0")
    cache_profile_ttl: int = 3600  # 1 hour
    cache_evolution_score_ttl: int = 300  # 5 minutes
    cache_archetype_list_ttl: int = 86400  # 24 hours
    cache_snapshot_analysis_ttl: int = 86400  # 24 hours

    # Celery
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/1"
    learning_queue_max_attempts: int = 3
    prune_schedule_seconds: float = 3600.0

    # Gemini (tone-shift classification)
    google_api_key: str = ""
    google_model_fast: str = "gemini-1.5-flash-latest"
    llm_timeout: int = 60
    llm_tone_input_max_chars: int = 1000

    # Style delta extraction retry (1s, 2s, 4s between attempts)
    extractor_max_attempts: int = 4
    extractor_backoff_base_seconds: float = 1.0
    extractor_backoff_max_seconds: float = 8.0

    # Learning
    max_edit_metadata_per_user: int = 50
    max_profile_versions: int = 10
    recent_edits_limit: int = 20
    aggregate_edits_limit: int = 50
    min_edits_for_pattern_detection: int = 3
    min_edits_for_banned_phrases: int = 2
    min_edits_for_major_changes: int = 5
    adjustment_percentage: float = 0.15
    sentence_length_min: float = 5
    sentence_length_max: float = 50
    max_common_phrases: int = 20
    max_banned_phrases: int = 20
    max_sample_posts: int = 10
    max_thread_phrases: int = 10
    max_thread_word_substitutions: int = 10
    edited_text_min_chars: int = 10
    learning_rate_limit_seconds: int = 300  # 5 minutes between feedback updates
    prune_every_n_edits: int = 10  # Lazy prune cadence

    # Optimistic concurrency on user records
    profile_update_max_retries: int = 3
    profile_update_backoff_seconds: float = 0.1

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "console"

    # Sentry (Error Tracking)
    sentry_dsn: str = ""
    sentry_environment: str = "development"
    sentry_traces_sample_rate: float = 0.1


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
