"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
"""

from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "Coaching Session Engine"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # ── Server ───────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # ── Database ─────────────────────────────────────────────
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SLOT_LOCK_TTL: int = 30       # held only while a reschedule commits

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # ── Daily.co (video rooms) ───────────────────────────────
    DAILY_API_KEY: Optional[str] = None
    DAILY_API_URL: str = "https://api.daily.co/v1"
    DAILY_DOMAIN_URL: str = "https://coaching.daily.co"
    DAILY_TIMEOUT_SECONDS: float = 5.0
    DAILY_MAX_PARTICIPANTS: int = 2

    # ── CORS ─────────────────────────────────────────────────
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # ── Business Config ──────────────────────────────────────
    PRACTICE_TIMEZONE: str = "Europe/Istanbul"
    RESCHEDULE_MIN_NOTICE_HOURS: int = 24
    MAX_RESCHEDULES: int = 2
    CANCEL_MIN_NOTICE_HOURS: int = 24
    MEETING_TOKEN_TTL_MINUTES: int = 120

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def daily_enabled(self) -> bool:
        return bool(self.DAILY_API_KEY)


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
