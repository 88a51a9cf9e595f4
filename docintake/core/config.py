"""
Application configuration settings
"""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    PROJECT_NAME: str = "Document Collection & Processing API"
    VERSION: str = "1.0.0"
    DATABASE_URL: str = "sqlite+aiosqlite:///./docintake.db"
    BUCKET_DIR: Path = Path("./bucket")
    MAX_FILE_SIZE: int = 10 * 1024 * 1024
    ALLOWED_EXTENSIONS: set = {".pdf", ".png", ".jpg", ".jpeg", ".tif", ".tiff", ".txt", ".json"}
    LOG_LEVEL: str = "INFO"

    # Provider backend: "local" (keyword/regex, no model) or "qwen3vl" (needs the vision extra)
    PROVIDER_BACKEND: str = "local"
    QWEN3VL_MODEL_ID: str = "Qwen/Qwen3-VL-2B-Instruct"

    # Orchestrator
    STAGE_TIMEOUT_SECONDS: float = 120.0
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_INITIAL_DELAY_SECONDS: float = 0.5
    RETRY_BACKOFF_MULTIPLIER: float = 2.0
    RETRY_MAX_DELAY_SECONDS: float = 10.0
    LEASE_TTL_SECONDS: int = 600
    PROCESSING_STALE_AFTER_SECONDS: int = 1800
    JOB_RETENTION_SECONDS: int = 300
    AUTO_COMPLETE_CHECKLIST: bool = True

    # Alert policy
    ALERT_DEADLINE_HORIZON_DAYS: int = 7
    ALERT_REVIEW_CONFIDENCE_THRESHOLD: Optional[float] = None
    ALERT_SYSTEM_ERROR_CRITICAL_ATTEMPTS: int = 3

    # Auto-fill
    DEFAULT_TAX_YEAR: Optional[int] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
settings.BUCKET_DIR.mkdir(parents=True, exist_ok=True)
