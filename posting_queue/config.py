"""
Centralized Configuration System
Environment-aware settings for the posting queue, its store and the sweeper.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow"
    )
    """
    Production-grade configuration management.
    Loads from environment variables with sensible defaults.
    """

    # ============================================
    # STORAGE
    # ============================================
    storage_backend: Literal["mongodb", "memory"] = "mongodb"  # memory: single process, no persistence

    # ============================================
    # MONGODB
    # ============================================
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "posting_queue"
    mongodb_max_pool_size: int = 10
    mongodb_min_pool_size: int = 1
    mongodb_server_selection_timeout_ms: int = 5000

    # ============================================
    # RETRY POLICY
    # ============================================
    posting_backoff_unit_seconds: int = 300  # next_retry_at = now + unit * attempts
    posting_max_attempts: int = 3

    # ============================================
    # BACKGROUND SWEEP
    # ============================================
    sweep_enabled: bool = True
    sweep_interval_seconds: float = 30.0
    sweep_batch_size: int = 50
    sweep_max_concurrent: int = 5
    stale_processing_seconds: int = 900  # 0 disables stale claim recovery

    # ============================================
    # API
    # ============================================
    queue_page_size_default: int = 50
    queue_page_size_max: int = 100

    # ============================================
    # POSTERS
    # ============================================
    poster_timeout_seconds: float = 15.0

    # ============================================
    # LOGGING
    # ============================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    enable_structured_logging: bool = False  # Set to True for production JSON logs

    # ============================================
    # ENVIRONMENT
    # ============================================
    environment: Literal["development", "staging", "production"] = "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Singleton pattern for settings.
    Uses LRU cache to ensure only one Settings instance exists.
    """
    return Settings()


# Convenience accessor for common use
settings = get_settings()
