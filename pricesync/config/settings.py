"""
Configuration settings for the pricesync pipeline
Loads from environment variables and the .env file
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings"""

    # Environment
    environment: str = "development"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./pricesync.db"
    db_pool_size: int = 5
    db_max_overflow: int = 10

    # Broker
    redis_url: str = "redis://redis:6379/0"
    celery_broker_url: str = ""
    celery_result_backend: str = ""

    # Files
    upload_directory: str = "./data/uploads"
    export_directory: str = "./data/exports"

    # Format detection
    detection_bytes: int = 1_048_576
    detection_sample_lines: int = 10

    # Import
    import_batch_size: int = 500
    cancellation_check: str = "batch"  # "batch" or "row"
    duplicate_handling: str = "override"

    # Progress tracking
    progress_retention_seconds: float = 300.0
    progress_reaper_interval: float = 60.0
    stuck_operation_minutes: int = 30
    operation_retention_days: int = 90

    # Worker pools
    file_pool_core_size: int = 2
    file_pool_max_size: int = 4
    file_pool_queue_capacity: int = 10
    file_pool_overflow: str = "caller_runs"
    export_pool_core_size: int = 1
    export_pool_max_size: int = 2
    export_pool_queue_capacity: int = 20
    export_pool_overflow: str = "reject"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra fields in .env file

    @property
    def broker_url(self) -> str:
        return self.celery_broker_url or self.redis_url

    @property
    def result_backend(self) -> str:
        return self.celery_result_backend or self.redis_url


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
