from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Slotkeeper API"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""

    SECRET_KEY: str = "change-me"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    DATABASE_URL: str = "sqlite:///./slotkeeper.db"

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Row lock waits. Reserve/Release/Move give up after LOCK_TIMEOUT_MS and surface "busy".
    LOCK_TIMEOUT_MS: int = 5000
    LOCK_RETRY_ATTEMPTS: int = 3
    LOCK_RETRY_BASE_DELAY_MS: int = 50

    # Slot materialization
    MATERIALIZE_HORIZON_DAYS: int = 60
    MAX_MATERIALIZE_DAYS: int = 120

    # Temporary capacity holds taken while a customer fills in the booking form
    HOLD_SECONDS: int = 120

    DEFAULT_BOOKING_STATUS: str = "confirmed"  # confirmed|pending

    CELERY_TIMEZONE: str = "UTC"
    # Wall clock of slot dates and shift times; decides which slots have already started
    SLOT_TIMEZONE: str = "UTC"

    @field_validator("DEFAULT_BOOKING_STATUS", mode="after")
    @classmethod
    def check_default_status(cls, v: str) -> str:
        if v not in ("confirmed", "pending"):
            raise ValueError("DEFAULT_BOOKING_STATUS must be confirmed or pending")
        return v


settings = Settings()
