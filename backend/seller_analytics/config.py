from pydantic import Field
from pydantic_settings import BaseSettings
from typing import Optional
import os
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    # DATABASE_URL should point at Postgres in production; the SQLite default
    # only exists for local development.
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./seller_analytics.db")

    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # Shared secret for internal endpoints (full sync "run now"). When unset
    # those endpoints are disabled.
    INTERNAL_API_KEY: Optional[str] = None

    # Marketplace API hosts, one per API family. Each family has its own rate
    # limits on the marketplace side.
    MARKETPLACE_CONTENT_API_URL: str = "https://content-api.wildberries.ru"
    MARKETPLACE_ANALYTICS_API_URL: str = "https://seller-analytics-api.wildberries.ru"
    MARKETPLACE_ADVERT_API_URL: str = "https://advert-api.wildberries.ru"
    MARKETPLACE_MARKETPLACE_API_URL: str = "https://marketplace-api.wildberries.ru"

    MARKETPLACE_HTTP_TIMEOUT_SECONDS: float = 30.0
    # 429 handling inside the client only. The orchestrator itself never
    # retries; the next scheduled run resyncs.
    MARKETPLACE_MAX_RETRIES: int = 3
    MARKETPLACE_RETRY_DELAY_SECONDS: float = 20.0
    # Pause between paged/batched calls to stay under per-key request limits.
    MARKETPLACE_REQUEST_DELAY_SECONDS: float = 0.0

    # Worker pools. Analytics and warehouse runs use separate pools so one
    # cannot starve the other.
    ANALYTICS_SYNC_POOL_SIZE: int = Field(default=4, ge=2, le=5)
    WAREHOUSE_SYNC_POOL_SIZE: int = Field(default=2, ge=2, le=5)
    SYNC_QUEUE_CAPACITY: int = Field(default=100, ge=100)

    # Daily schedule, server-local time ("HH:MM").
    SCHEDULER_ENABLED: bool = True
    WAREHOUSE_SYNC_TIME: str = "00:00"
    ANALYTICS_SYNC_TIME: str = "01:30"

    SYNC_BACKFILL_DAYS: int = 14
    MANUAL_SYNC_MIN_INTERVAL_HOURS: int = 6

    REPORT_MAX_PERIOD_DAYS: int = 7
    REPORT_MAX_PERIODS: int = 10

    # "en" or "ru"; controls the word forms used in user-facing messages.
    MESSAGES_LOCALE: str = "en"

    class Config:
        env_file = None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


settings = Settings()
