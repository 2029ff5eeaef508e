"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
"""

from functools import lru_cache
from typing import Dict, List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "Swim School Reservations"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str

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
    REDIS_CHANGE_CHANNEL: str = "swim:changes"

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # ── Frontend ─────────────────────────────────────────────
    FRONTEND_URL: str = "http://localhost:5173"
    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # ── Celery ───────────────────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"
    CELERY_TIMEZONE: str = "America/Port-au-Prince"

    # ── Rate Limiting ────────────────────────────────────────
    RATE_LIMIT_UNAUTH_PER_MINUTE: int = 60

    # ── Business Config ──────────────────────────────────────
    DEFAULT_CURRENCY: str = "USD"
    RESERVATION_PENDING_TIMEOUT_HOURS: int = 48   # 0 disables the sweep
    PAYMENT_OVERDUE_DAYS: int = 7
    AUDIT_RETENTION_DAYS: int = 90
    PACKAGE_VALIDITY_DAYS_SINGLE: int = 30
    PACKAGE_VALIDITY_DAYS_MONTHLY: int = 30
    PACKAGE_VALIDITY_DAYS_UNLIMITED: int = 365

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    @property
    def package_validity_days(self) -> Dict[str, int]:
        return {
            "single": self.PACKAGE_VALIDITY_DAYS_SINGLE,
            "monthly": self.PACKAGE_VALIDITY_DAYS_MONTHLY,
            "unlimited": self.PACKAGE_VALIDITY_DAYS_UNLIMITED,
        }


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance, shared everywhere."""
    return Settings()


settings = get_settings()
