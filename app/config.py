"""
Configuration management for the ShopSync order sync service
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "ShopSync Order Sync Service"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_to_file: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./shopsync.db"

    # Shopify
    shopify_api_version: str = "2024-01"
    shopify_request_timeout: float = 60.0

    # Order sync engine
    sync_batch_size: int = 250  # Shopify max page size, also the write batch size
    sync_initial_interval_ms: int = 200  # 5 requests per second
    sync_min_interval_ms: int = 100  # 10 requests per second
    sync_max_interval_ms: int = 1000  # 1 request per second
    sync_interval_step_ms: int = 50
    sync_max_retries: int = 5
    sync_initial_backoff_seconds: float = 1.0
    shop_sync_timeout_seconds: float = 1800.0
    batch_sync_timeout_seconds: float = 300.0
    sync_max_concurrent_shops: int = 0  # 0 = one task per shop, no cap

    # Scheduler
    enable_scheduler: bool = True
    sync_schedule_minutes: int = 360

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
