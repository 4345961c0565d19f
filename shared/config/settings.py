"""
Settings Module
===============

Pydantic-based configuration with environment variable loading.

Version: 0.1.0
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class PostgresSettings(BaseSettings):
    """PostgreSQL database configuration."""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = "localhost"
    port: int = 5432
    user: str = "regtruth"
    password: SecretStr = SecretStr("regtruth_dev_password")
    db: str = "regtruth"
    pool_size: int = 10

    # Full async DSN, overrides the fields above (e.g. sqlite+aiosqlite://)
    dsn: str | None = None

    @property
    def async_url(self) -> str:
        """Generate async SQLAlchemy connection URL."""
        if self.dsn:
            return self.dsn
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.db}"


class PipelineSettings(BaseSettings):
    """Thresholds and timings for the regulatory truth pipeline."""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    # Reviewer
    auto_approve_threshold: float = Field(default=0.90, ge=0.0, le=1.0)

    # Coverage gate
    coverage_min_score: float = Field(default=0.8, ge=0.0, le=1.0)
    low_classification_confidence: float = Field(default=0.7, ge=0.0, le=1.0)

    # Arbiter
    arbiter_min_confidence: float = Field(default=0.85, ge=0.0, le=1.0)
    arbiter_escalation_margin: float = Field(default=0.1, ge=0.0, le=1.0)

    # Graph
    graph_namespace: str = "SRG"

    # Harness
    phase_delay_seconds: float = Field(default=5.0, ge=0.0)
    max_concurrency: int = Field(default=4, ge=1)
    heartbeat_timeout_seconds: float = Field(default=300.0, gt=0.0)
    heartbeat_poll_interval_seconds: float = Field(default=5.0, gt=0.0)
    fetch_timeout_seconds: float = Field(default=30.0, gt=0.0)
    fetch_retries: int = Field(default=3, ge=1)
    artifacts_dir: Path | None = None


class CORSSettings(BaseSettings):
    """CORS configuration."""

    model_config = SettingsConfigDict(env_prefix="CORS_")

    origins: str = "http://localhost:3000"
    allow_credentials: bool = True

    @property
    def origins_list(self) -> list[str]:
        """Get origins as a list."""
        return [o.strip() for o in self.origins.split(",") if o.strip()]


class Settings(BaseSettings):
    """
    Main application settings.

    Aggregates all configuration groups and provides
    environment-specific behavior.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # General
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True
    log_level: LogLevel = LogLevel.INFO
    port: int = 8010

    # Project paths
    project_root: Path = Field(default_factory=lambda: Path(__file__).parent.parent.parent)

    # Database connection
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)

    # Pipeline behaviour
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)

    # Security
    cors: CORSSettings = Field(default_factory=CORSSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Ensure log level is uppercase."""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.environment == Environment.TESTING


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton.
    """
    return Settings()
