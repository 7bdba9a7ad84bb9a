from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./dev.db"
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    FRONTEND_ORIGINS: List[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"

    # reservation holds
    RESERVATION_HOLD_MINUTES: int = 15
    MAX_HOLD_MINUTES: int = 60
    EXPIRING_SOON_MINUTES: int = 5

    # expiry sweeper
    SWEEPER_ENABLED: bool = True
    SWEEP_INTERVAL_SECONDS: int = 60
    SWEEP_BATCH_SIZE: int = 500
    SWEEP_RETRY_ATTEMPTS: int = 2
    SWEEP_STALE_MINUTES: int = 10
    CRON_SECRET: Optional[str] = None

    # alerting
    DEFAULT_LOW_STOCK_THRESHOLD: int = 5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()
