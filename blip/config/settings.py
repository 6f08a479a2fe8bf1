"""
Application settings and configuration management
Uses Pydantic Settings for environment variable handling and validation
"""

from functools import lru_cache
from typing import ClassVar, FrozenSet, List, Optional
from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource
import os
import json
import secrets
import warnings

from croniter import croniter


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application
    app_name: str = "Blip Soroban Metrics API"
    environment: str = Field(default="development", env="ENVIRONMENT")
    debug: bool = Field(default=False, env="DEBUG")
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_json: Optional[bool] = Field(
        default=None,
        env="LOG_JSON",
        description="Render logs as JSON (defaults to true outside development)"
    )
    host: str = Field(default="0.0.0.0", env="HOST")
    port: int = Field(default=8000, env="PORT")

    # CORS
    cors_origins: str = Field(
        default='["http://localhost:3000","http://127.0.0.1:3000"]',
        env="CORS_ORIGINS",
        description="Allowed origins (JSON array or comma-separated)"
    )
    cors_allow_credentials: bool = Field(default=True, env="CORS_ALLOW_CREDENTIALS")
    cors_max_age: int = Field(default=600, env="CORS_MAX_AGE")

    # Security headers
    security_headers_enabled: bool = Field(default=True, env="SECURITY_HEADERS_ENABLED")
    hsts_enabled: bool = Field(default=False, env="HSTS_ENABLED")
    hsts_max_age: int = Field(default=15552000, env="HSTS_MAX_AGE")

    # JWT Authentication (tokens are issued by the identity provider)
    # SECURITY: No default value outside development/testing
    secret_key: Optional[str] = Field(default=None, env="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    jwt_issuer: Optional[str] = Field(default=None, env="JWT_ISSUER")
    jwt_audience: Optional[str] = Field(default=None, env="JWT_AUDIENCE")
    jwt_leeway_seconds: int = Field(default=30, env="JWT_LEEWAY_SECONDS")

    # Database
    database_url_override: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "database_url_override"),
        description="Full SQLAlchemy URL; takes precedence over POSTGRES_* settings"
    )
    postgres_host: str = Field(default="localhost", env="POSTGRES_HOST")
    postgres_port: int = Field(default=5432, env="POSTGRES_PORT")
    postgres_db: str = Field(default="blip", env="POSTGRES_DB")
    postgres_user: str = Field(default="blip", env="POSTGRES_USER")
    postgres_password: str = Field(default="blip", env="POSTGRES_PASSWORD")
    db_pool_size: int = Field(default=10, env="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=10, env="DB_MAX_OVERFLOW")

    # AWS / Athena warehouse
    aws_region: str = Field(default="us-east-1", env="AWS_REGION")
    athena_database: str = Field(default="stellar", env="ATHENA_DATABASE")
    athena_operations_table: str = Field(
        default="enriched_history_operations_soroban",
        env="ATHENA_OPERATIONS_TABLE"
    )
    athena_contract_events_table: str = Field(
        default="contract_events",
        env="ATHENA_CONTRACT_EVENTS_TABLE"
    )
    athena_output_location: Optional[str] = Field(default=None, env="ATHENA_OUTPUT_LOCATION")
    athena_workgroup: Optional[str] = Field(default=None, env="ATHENA_WORKGROUP")
    athena_poll_interval_seconds: float = Field(default=1.0, env="ATHENA_POLL_INTERVAL_SECONDS")
    athena_query_timeout_seconds: float = Field(default=60.0, env="ATHENA_QUERY_TIMEOUT_SECONDS")

    # Identity provider
    identity_api_url: str = Field(default="https://api.clerk.com/v1", env="IDENTITY_API_URL")
    identity_secret_key: Optional[str] = Field(default=None, env="IDENTITY_SECRET_KEY")
    identity_timeout_seconds: float = Field(default=10.0, env="IDENTITY_TIMEOUT_SECONDS")

    # Email
    email_enabled: bool = Field(default=False, env="EMAIL_ENABLED")
    email_sender: str = Field(default="alerts@blip.watch", env="EMAIL_SENDER")
    ses_region: Optional[str] = Field(default=None, env="SES_REGION")

    # Alert email job
    alert_emails_enabled: bool = Field(default=True, env="ALERT_EMAILS_ENABLED")
    alert_email_cron: str = Field(default="51 * * * *", env="ALERT_EMAIL_CRON")
    alert_ingestion_lag_minutes: int = Field(default=30, env="ALERT_INGESTION_LAG_MINUTES")
    alert_window_minutes: int = Field(default=60, env="ALERT_WINDOW_MINUTES")
    alert_error_rate_threshold: float = Field(default=0.05, env="ALERT_ERROR_RATE_THRESHOLD")
    recent_alert_error_rate_threshold: float = Field(default=0.01, env="RECENT_ALERT_ERROR_RATE_THRESHOLD")

    # Pagination
    default_limit: int = Field(default=10, env="DEFAULT_LIMIT")
    max_limit: int = Field(default=100, env="MAX_LIMIT")

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_parse_none_str="null",
        populate_by_name=True,
    )

    # List of known insecure secret key values that must be rejected
    INSECURE_SECRET_KEYS: ClassVar[FrozenSet[str]] = frozenset([
        "secret",
        "changeme",
        "password",
        "123456",
        "your-secret-key",
        "change-me",
        "test-secret",
    ])

    @model_validator(mode='after')
    def validate_and_set_secret_key(self) -> 'Settings':
        """
        Validate and set the JWT verification key based on environment.

        - Production: SECRET_KEY must be set, 32+ chars, not a known insecure value
        - Development/testing: a temporary key is generated when missing
        """
        is_testing = (
            os.environ.get("PYTEST_CURRENT_TEST") is not None or
            os.environ.get("TESTING", "").lower() in ("1", "true", "yes")
        )
        is_production = self.environment.lower() == "production"

        if self.secret_key is None:
            if is_production:
                raise ValueError(
                    "CRITICAL SECURITY ERROR: SECRET_KEY environment variable is required "
                    "in production."
                )
            object.__setattr__(self, 'secret_key', secrets.token_urlsafe(64))
            if not is_testing:
                warnings.warn(
                    "No SECRET_KEY set. Using an auto-generated temporary key; "
                    "tokens from the identity provider will not validate.",
                    UserWarning,
                    stacklevel=2
                )
            return self

        too_weak = (
            self.secret_key.lower() in self.INSECURE_SECRET_KEYS
            or len(self.secret_key) < 32
        )
        if too_weak and self.jwt_algorithm.upper().startswith("HS"):
            if is_production:
                raise ValueError(
                    "CRITICAL SECURITY ERROR: SECRET_KEY must be at least 32 characters "
                    "and not a known insecure value."
                )
            if not is_testing:
                warnings.warn(
                    "WARNING: SECRET_KEY is insecure. This must be changed for production.",
                    UserWarning,
                    stacklevel=2
                )
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings sources to exclude .env file loading"""
        return init_settings, env_settings, file_secret_settings

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("alert_email_cron")
    @classmethod
    def validate_alert_email_cron(cls, v):
        if not croniter.is_valid(v):
            raise ValueError(f"Invalid cron expression: {v}")
        return v

    @model_validator(mode='after')
    def validate_limits(self) -> 'Settings':
        if self.default_limit <= 0 or self.max_limit < self.default_limit:
            raise ValueError("DEFAULT_LIMIT must be positive and not exceed MAX_LIMIT")
        return self

    @property
    def allowed_origins(self) -> List[str]:
        """Parse and return CORS origins as a list"""
        raw = self.cors_origins.strip()

        if raw.startswith('[') and raw.endswith(']'):
            try:
                return json.loads(raw)
            except (json.JSONDecodeError, ValueError):
                pass

        if ',' in raw:
            return [origin.strip() for origin in raw.split(",") if origin.strip()]

        if raw:
            return [raw]

        return ["http://localhost:3000", "http://127.0.0.1:3000"]

    @property
    def database_url(self) -> str:
        """SQLAlchemy async database URL"""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment"""
        return self.environment.lower() == "development"

    @property
    def render_json_logs(self) -> bool:
        if self.log_json is not None:
            return self.log_json
        return not self.is_development

    def validate_warehouse_configuration(self) -> list[str]:
        """
        Validate Athena-related configuration and return list of issues.
        Returns empty list if all valid.
        """
        issues = []

        if not self.athena_database:
            issues.append("ATHENA_DATABASE is not configured")

        if not self.athena_operations_table:
            issues.append("ATHENA_OPERATIONS_TABLE is not configured")

        if not self.athena_contract_events_table:
            issues.append("ATHENA_CONTRACT_EVENTS_TABLE is not configured")

        if not self.athena_output_location and not self.athena_workgroup:
            issues.append("Either ATHENA_OUTPUT_LOCATION or ATHENA_WORKGROUP must be configured")

        return issues


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings
    Uses lru_cache to avoid reading environment variables multiple times
    """
    return Settings()


def clear_settings_cache() -> None:
    """
    Clear the settings cache. Used primarily for testing.
    After calling this, the next call to get_settings() will
    create a new Settings instance with fresh environment variables.
    """
    get_settings.cache_clear()
