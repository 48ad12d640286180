"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the API, the Celery worker
and the settlement batch.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="goalguard")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)
    # Full URL override (e.g. sqlite:///./goalguard.db for local runs)
    DATABASE_URL: Optional[str] = Field(default=None)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")

    # Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")

    # Daily settlement
    # "Yesterday" is always computed in this zone, for every user.
    SETTLEMENT_TIMEZONE: str = Field(default="America/New_York")
    SETTLEMENT_MAX_ATTEMPTS: int = Field(default=3, ge=1, le=10)
    SETTLEMENT_RETRY_BACKOFF_S: float = Field(default=0.1, ge=0)
    SETTLEMENT_WORKERS: int = Field(default=1, ge=1, le=32)
    SETTLEMENT_LOCK_TTL_S: int = Field(default=1800)

    # Gamification economy
    COINS_FOR_DAILY_GOAL_COMPLETION: int = Field(default=10, ge=0)
    STREAK_BONUS_COINS_PER_DAY: int = Field(default=5, ge=0)
    STREAK_BONUS_THRESHOLD_DAYS: int = Field(default=3, ge=1)
    GOAL_REDUCTION_FACTOR: float = Field(default=0.75, gt=0, le=1)
    REWARD_COST_SKIP_DAY: int = Field(default=200, ge=0)
    REWARD_COST_STREAK_SAVER: int = Field(default=450, ge=0)
    REWARD_COST_GOAL_REDUCTION: int = Field(default=100, ge=0)

    # Shared secret for the internal routers. Unset = no check (local dev).
    INTERNAL_API_TOKEN: Optional[str] = Field(default=None)

    # API Configuration
    API_HOST: str = Field(default="0.0.0.0")
    API_PORT: int = Field(default=8000)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:"
            f"{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:"
            f"{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )


# Global settings instance
settings = Settings()
