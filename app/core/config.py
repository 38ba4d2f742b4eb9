from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Basic settings
    PROJECT_NAME: str = "Telehealth Booking"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    API_V1_PREFIX: str = "/api/v1"

    # Persistence: "sql" or "memory". Unset means sql when DATABASE_URL is set.
    DATABASE_URL: Optional[str] = None
    PERSISTENCE_BACKEND: Optional[str] = None
    SEED_DEMO_DATA: bool = True

    # Redis (booking locks)
    REDIS_URL: Optional[str] = None
    BOOKING_LOCK_SECONDS: int = 30

    # Celery
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None
    COMPLETION_SWEEP_SECONDS: int = 300

    # Notifications: "store", "celery" or "log"
    NOTIFICATION_BACKEND: str = "store"

    # Scheduling
    SLOT_HORIZON_DAYS: int = 10
    MAX_SLOT_HORIZON_DAYS: int = 60
    SLOT_GRANULARITY_MINUTES: int = 60
    DEFAULT_TIMEZONE: str = "UTC"
    HOLIDAY_COUNTRY: Optional[str] = None
    RESCHEDULE_REVALIDATES_AVAILABILITY: bool = True

    # CORS
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):
        if isinstance(v, str):
            return [i.strip() for i in v.split(",")]
        return v

    @field_validator("PERSISTENCE_BACKEND", mode="before")
    @classmethod
    def normalize_persistence_backend(cls, v):
        if isinstance(v, str):
            return v.strip().lower() or None
        return v

    @field_validator("NOTIFICATION_BACKEND", mode="before")
    @classmethod
    def normalize_notification_backend(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    model_config = {"env_file": ".env", "case_sensitive": True, "extra": "ignore"}

    @property
    def persistence_backend(self) -> str:
        if self.PERSISTENCE_BACKEND:
            return self.PERSISTENCE_BACKEND
        return "sql" if self.DATABASE_URL else "memory"


# Global settings instance
settings = Settings()
