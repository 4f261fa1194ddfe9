"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # Service
    service_port: int = 8001
    log_level: str = "INFO"
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:3000", "*"]

    # Audit queue
    queue_max_concurrent: int = 3
    queue_job_timeout_seconds: float = 60.0
    queue_max_attempts: int = 3  # first attempt plus two retries
    queue_poll_interval_seconds: float = 1.0
    queue_cleanup_interval_seconds: float = 300.0
    queue_retention_hours: float = 24.0
    queue_default_processing_seconds: float = 30.0
    queue_shutdown_timeout_seconds: float = 30.0

    # Batch submissions
    batch_max_urls: int = 10

    # Page fetch executor
    fetch_timeout_seconds: float = 30.0
    fetch_user_agent: str = "AuditQueueBot/0.1"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
