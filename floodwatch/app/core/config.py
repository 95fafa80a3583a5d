"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Usage:
    from floodwatch.app.core.config import settings
    print(settings.TICK_INTERVAL_S)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Floodwatch Risk Pipeline"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Pipeline scheduling ──
    TICK_INTERVAL_S: float = 600.0  # 10 min ingestion cadence
    AUTO_START_SCHEDULER: bool = True

    # ── History window ──
    HISTORY_RETENTION_HOURS: float = 24.0

    # ── Forecast engine ──
    FORECAST_SEQUENCE_LENGTH: int = 10
    FORECAST_MIN_HISTORY: int = 50
    FORECAST_RETRAIN_EVERY: int = 20
    FORECAST_RETRAIN_MIN_INTERVAL_S: float = 0.0  # 0 disables the rate limit
    FORECAST_PRETRAIN_SAMPLES: int = 100
    FORECAST_PRETRAIN_EPOCHS: int = 50
    FORECAST_RETRAIN_EPOCHS: int = 10
    FORECAST_SEED: int = 42

    # ── KMA ultra-short-term nowcast ──
    KMA_USE_REAL_API: bool = True
    KMA_API_KEY: Optional[str] = None
    KMA_BASE_URL: str = (
        "http://apis.data.go.kr/1360000/VilageFcstInfoService_2.0"
    )
    KMA_NX: int = 89  # grid X
    KMA_NY: int = 90  # grid Y
    KMA_FETCH_TIMEOUT: float = 10.0  # seconds

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
