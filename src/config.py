"""
Centralized Configuration System
Environment-aware settings for the webhook pipeline, processors and adapters.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal, Optional


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
    # MONGODB
    # ============================================
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "crm_webhooks"
    mongodb_max_pool_size: int = 50
    mongodb_min_pool_size: int = 5
    mongodb_server_selection_timeout_ms: int = 5000
    # Standalone servers reject multi-document transactions
    mongodb_use_transactions: bool = True

    # ============================================
    # QUEUE
    # ============================================
    lease_seconds: int = 300
    work_item_ttl_days: int = 7
    critical_max_attempts: int = 5
    default_max_attempts: int = 3

    # ============================================
    # PROCESSORS
    # ============================================
    processor_max_runtime_seconds: float = 50.0
    processor_concurrency: int = 5
    empty_queue_sleep_seconds: float = 1.0
    yield_every: int = 100
    yield_sleep_seconds: float = 0.1
    run_processors_in_api: bool = False

    # ============================================
    # ACCOUNT LIFECYCLE
    # ============================================
    setup_token_ttl_days: int = 7
    welcome_email_delay_seconds: int = 300
    uninstall_project_window_days: int = 30

    # ============================================
    # REALTIME DEDUP
    # ============================================
    dedup_window_ms: int = 5000
    dedup_marker_ttl_seconds: int = 60

    # ============================================
    # NOTIFICATIONS
    # ============================================
    ably_api_key: Optional[str] = None
    ably_rest_url: str = "https://rest.ably.io"
    expo_access_token: Optional[str] = None
    expo_push_url: str = "https://exp.host/--/api/v2/push/send"
    notification_timeout_seconds: float = 10.0

    # ============================================
    # CRM API (enrichment)
    # ============================================
    crm_api_base_url: str = "https://services.leadconnectorhq.com"
    crm_api_version: str = "2021-04-15"
    crm_api_timeout_seconds: float = 10.0

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
