"""
Configuration management for Shop Analytics
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Shop Analytics"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_dir: str = "logs"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./shop_analytics.db"

    # Shopify
    shopify_api_version: str = "2024-01"
    shopify_page_limit: int = 250  # Max orders per page allowed by the Admin API
    shopify_max_pages: int = 40  # Pagination cap per window (40 x 250 = 10k orders)
    shopify_request_timeout: float = 60.0

    # Analytics
    clv_lookback_days: int = 365
    default_timezone: str = "UTC"  # Used when a shop has no iana_timezone stored

    # Cache
    cache_cleanup_interval_minutes: int = 60
    refresh_outcome_history: int = 100  # Background refresh outcomes kept in memory

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
