from typing import List, Literal

from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    PROJECT_NAME: str = "PerioLifts"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Validation
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    # Record store
    POCKETBASE_URL: str = "http://127.0.0.1:8090"
    POCKETBASE_TIMEOUT_SECONDS: float = 10.0
    HISTORY_COLLECTION: str = "workout_history"
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100
    FULL_LIST_BATCH_SIZE: int = 200
    NETWORK_RETRY_ATTEMPTS: int = 2
    NETWORK_RETRY_BACKOFF_SECONDS: float = 0.5

    # Analytics
    STREAK_DATE_SOURCE: Literal["completed_or_scheduled", "completed_only"] = "completed_or_scheduled"
    USER_TIMEZONE: str = "UTC"

    # Rest timer
    DEFAULT_REST_SECONDS: int = 90
    USE_DEFAULT_REST_TIME: bool = False

    # Offline cache
    OFFLINE_CACHE_ENABLED: bool = False
    OFFLINE_CACHE_URL: str = "sqlite+aiosqlite:///./periolifts_cache.db"
    OFFLINE_QUERY_CACHE_LIMIT: int = 50

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


settings = Settings()
