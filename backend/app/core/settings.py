"""
Application settings with validation using pydantic-settings.
Validates all required environment variables at startup.
"""
import socket
from typing import Optional
from urllib.parse import quote_plus
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _resolve_db_host(host: str) -> str:
    """Resolve DB host to IP so asyncpg avoids getaddrinfo in asyncio context (e.g. in Docker)."""
    if not host or host in ("localhost", "127.0.0.1"):
        return host
    try:
        return socket.gethostbyname(host)
    except socket.gaierror:
        return host


class Settings(BaseSettings):
    """Application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    DB_USER: str = Field(..., description="PostgreSQL username")
    DB_PASSWORD: str = Field(..., description="PostgreSQL password")
    DB_NAME: str = Field(..., description="PostgreSQL database name")
    DB_HOST: str = Field(default="localhost", description="PostgreSQL host")
    DB_PORT: str = Field(default="5432", description="PostgreSQL port")

    # Redis configuration (sector catalog cache)
    REDIS_HOST: str = Field(default="localhost", description="Redis host")
    REDIS_PORT: int = Field(default=6379, description="Redis port")
    REDIS_DB: int = Field(default=0, description="Redis database number")

    # Operator access
    ADMIN_SECRET: Optional[str] = Field(default=None, description="Operator API token (required in production)")

    # CORS configuration
    ALLOWED_ORIGINS: str = Field(default="", description="Comma-separated list of allowed CORS origins")

    # Environment
    ENVIRONMENT: str = Field(default="production", description="Environment: development or production")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # Slot wall-clock times are interpreted in this zone
    TIMEZONE: str = Field(default="Asia/Kolkata", description="IANA timezone of slot times")

    # Notification dispatcher (fire-and-forget webhook)
    NOTIFY_WEBHOOK_URL: Optional[str] = Field(default=None, description="Notification dispatcher endpoint")
    NOTIFY_TIMEOUT_SECONDS: float = Field(default=5.0, description="Notification HTTP timeout")

    # Backing store timeouts and retry policy
    STORE_TIMEOUT_SECONDS: float = Field(default=10.0, description="Per-attempt timeout for a unit of work")
    STORE_RETRY_ATTEMPTS: int = Field(default=3, description="Attempts before StoreUnavailable is surfaced")
    STORE_RETRY_BACKOFF_SECONDS: float = Field(default=0.2, description="Initial retry backoff (doubles each attempt)")

    # Assignment policy
    AUTO_ASSIGN_CAPACITY: int = Field(default=30, description="Orders a courier covers per slot assignment")
    COURIER_DAILY_ASSIGNMENT_LIMIT: int = Field(default=4, description="Default per-courier daily assignment ceiling")
    REQUIRE_VERIFIED_COURIERS: bool = Field(default=True, description="Only verified couriers are auto-assigned")
    AUTO_ASSIGN_ENABLED: bool = Field(default=False, description="Run auto-assign from the daily scheduler")
    AUTO_ASSIGN_HOUR: int = Field(default=6, description="Local hour at which the daily auto-assign runs")

    # Database pool configuration
    DB_POOL_SIZE: int = Field(default=20, description="Database connection pool size")
    DB_MAX_OVERFLOW: int = Field(default=40, description="Database max overflow connections")
    DB_POOL_RECYCLE: int = Field(default=3600, description="Database connection recycle time (seconds)")
    DB_POOL_TIMEOUT: int = Field(default=30, description="Seconds to wait for a pooled connection")

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        if v not in ("development", "production"):
            raise ValueError("ENVIRONMENT must be 'development' or 'production'")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("TIMEZONE")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown TIMEZONE '{v}'")
        return v

    @field_validator("AUTO_ASSIGN_HOUR")
    @classmethod
    def validate_auto_assign_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("AUTO_ASSIGN_HOUR must be between 0 and 23")
        return v

    def validate_production_settings(self) -> list[str]:
        """
        Validate that all required settings are present in production.
        Returns list of missing settings.
        """
        errors = []

        if self.ENVIRONMENT == "production":
            if not self.ADMIN_SECRET:
                errors.append("ADMIN_SECRET is required in production")
            if not self.ALLOWED_ORIGINS:
                errors.append("ALLOWED_ORIGINS is required in production")

        if self.STORE_RETRY_ATTEMPTS < 1:
            errors.append("STORE_RETRY_ATTEMPTS must be at least 1")

        return errors

    @property
    def db_url(self) -> str:
        """Get database URL. Resolve host to IP so connections work in Docker/async context."""
        host = _resolve_db_host(self.DB_HOST)
        password = quote_plus(self.DB_PASSWORD)
        return f"postgresql+asyncpg://{self.DB_USER}:{password}@{host}:{self.DB_PORT}/{self.DB_NAME}"

    @property
    def sync_db_url(self) -> str:
        """psycopg2 URL for Alembic, which runs migrations synchronously."""
        password = quote_plus(self.DB_PASSWORD)
        return f"postgresql+psycopg2://{self.DB_USER}:{password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.ENVIRONMENT == "production"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.TIMEZONE)

    @property
    def allowed_origins_list(self) -> list[str]:
        """Get list of allowed CORS origins."""
        if not self.ALLOWED_ORIGINS:
            return []
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()
        # Validate production settings
        errors = _settings.validate_production_settings()
        if errors:
            error_msg = "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_msg)
    return _settings
