"""
Configuration management.
Simple .env based config, shared by the API process and the cron runner.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    # Database
    database_path: str = "./data/storesync.db"

    # Cache (empty = in-process cache)
    redis_url: str = ""
    health_ttl_seconds: int = 300
    activity_ttl_seconds: int = 86400
    activity_max_entries: int = 100
    health_error_threshold: int = 10

    # Shopify
    shopify_api_version: str = "2025-01"
    request_timeout: float = 30.0
    bulk_poll_interval: float = 2.0
    bulk_max_wait: float = 300.0
    bulk_mutation_threshold: int = 250
    catalog_tag: str = ""  # product tag marking wholesale items, empty = all active

    # Sync
    import_concurrency: int = 5

    # Logging
    log_level: str = "INFO"


# Global settings instance
settings = Settings()
