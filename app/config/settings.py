from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "Todo List Notifications"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_JSON: bool = False

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./todolist.db"
    DATABASE_ECHO: bool = False

    # Authentication (verification only, tokens are issued by the auth service)
    JWT_SECRET_KEY: str = "<your-jwt-secret-key>"
    JWT_ALGORITHM: str = "HS256"

    # Email
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_FROM: str = "noreply@todolist.app"

    # Scheduler
    NOTIFICATIONS_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "UTC"
    DUE_SOON_CRON_MINUTE: int = 0
    DAILY_DIGEST_HOUR: int = 8
    OVERDUE_HOUR: int = 9

    # Notification engine
    DEFAULT_LEAD_TIME_HOURS: int = 24
    DIGEST_TASK_LIMIT: int = 10
    NOTIFICATION_MAX_CONCURRENCY: int = 5
    DELIVERY_TIMEOUT_SECONDS: float = 30.0

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    @field_validator("DAILY_DIGEST_HOUR", "OVERDUE_HOUR")
    def validate_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("hour must be between 0 and 23")
        return v

    @field_validator("DUE_SOON_CRON_MINUTE")
    def validate_minute(cls, v: int) -> int:
        if not 0 <= v <= 59:
            raise ValueError("minute must be between 0 and 59")
        return v

    @field_validator("NOTIFICATION_MAX_CONCURRENCY")
    def validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("NOTIFICATION_MAX_CONCURRENCY must be at least 1")
        return v

    @field_validator("DELIVERY_TIMEOUT_SECONDS")
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("DELIVERY_TIMEOUT_SECONDS must be positive")
        return v

    @property
    def email_dry_run(self) -> bool:
        """No SMTP host outside production means messages are only rendered and logged."""
        return not self.SMTP_HOST and self.ENVIRONMENT != "production"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
