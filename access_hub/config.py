from typing import List
from pydantic import AnyHttpUrl, computed_field
from pydantic_core import MultiHostUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Application
    PROJECT_NAME: str = "Access Hub"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Security
    SECRET_KEY: str
    QR_SIGNING_KEY: str | None = None
    ALGORITHM: str = "HS256"
    FACILITY_TIMEZONE: str = "UTC"

    # Validation
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []
    SCAN_RATE_LIMIT_PER_MINUTE: int = 120

    # Lifecycle
    GRACE_PERIOD_DAYS: int = 7
    ACCESS_CODE_MAX_ATTEMPTS: int = 20

    # Capacity
    FACILITY_CAPACITY: int = 40
    ENFORCE_FACILITY_CAPACITY: bool = False

    # Sweeper
    SWEEPER_ENABLED: bool = True
    SWEEPER_RUN_ON_STARTUP: bool = True
    SWEEPER_INTERVAL_SECONDS: int = 300
    MAINTENANCE_INTERVAL_SECONDS: int = 3600
    EXPIRING_SOON_WINDOW_MINUTES: int = 15
    JUST_EXPIRED_WINDOW_MINUTES: int = 1

    # Notifications
    NOTIFICATIONS_ENABLED: bool = True
    NOTIFICATION_PROVIDER: str = "in_app"
    NOTIFICATION_WEBHOOK_URL: str | None = None
    NOTIFICATION_WEBHOOK_TOKEN: str | None = None
    NOTIFICATION_TIMEOUT_SECONDS: int = 10

    # Database
    DATABASE_URL: str | None = None
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "access_hub"

    @computed_field
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return str(MultiHostUrl.build(
            scheme="postgresql+asyncpg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_HOST,
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB,
        ))

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

settings = Settings()  # type: ignore
