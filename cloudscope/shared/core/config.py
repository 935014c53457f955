from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator
from typing import Optional

SUPPORTED_SCAN_PROVIDERS = ("aws", "azure", "gcp")


class Settings(BaseSettings):
    """
    Main configuration for CloudScope.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """
    APP_NAME: str = "CloudScope"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # local, development, staging, production
    TESTING: bool = False

    @model_validator(mode='after')
    def validate_config(self) -> 'Settings':
        """Ensure scan, cache and production keys are present and valid."""
        if self.TESTING:
            return self

        unknown = [p for p in self.SCAN_PROVIDERS if p.lower() not in SUPPORTED_SCAN_PROVIDERS]
        if unknown:
            raise ValueError(
                f"SCAN_PROVIDERS contains unsupported providers: {unknown}. "
                f"Use: {', '.join(SUPPORTED_SCAN_PROVIDERS)}"
            )

        for attr_name in ["PROVIDER_SCAN_TIMEOUT_SECONDS", "PERSISTENCE_TIMEOUT_SECONDS", "TREND_CACHE_TTL_SECONDS"]:
            if getattr(self, attr_name) <= 0:
                raise ValueError(f"{attr_name} must be a positive number of seconds.")

        if self.is_production:
            # Database SSL Mode (only meaningful for PostgreSQL)
            if self.DATABASE_URL.startswith("postgresql") and self.DB_SSL_MODE not in ["require", "verify-ca", "verify-full"]:
                raise ValueError(
                    f"SECURITY ERROR: DB_SSL_MODE must be 'require', 'verify-ca', or 'verify-full' in production. "
                    f"Current: {self.DB_SSL_MODE}"
                )

            if not self.ADMIN_API_KEY or len(self.ADMIN_API_KEY) < 32:
                raise ValueError("SECURITY ERROR: ADMIN_API_KEY must be at least 32 characters in production.")

            if "*" in self.CORS_ORIGINS:
                raise ValueError("SECURITY ERROR: CORS_ORIGINS cannot contain '*' in production (credentials are allowed).")

        return self

    # Security
    CORS_ORIGINS: list[str] = []  # Empty by default - restricted in prod
    ADMIN_API_KEY: Optional[str] = None

    # Database
    DATABASE_URL: str  # Required
    DB_SSL_MODE: str = "require"  # Options: disable, require, verify-ca, verify-full
    DB_SSL_CA_CERT_PATH: Optional[str] = None  # Path to CA cert for verify-ca/verify-full modes
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 10
    DB_AUTO_CREATE: bool = True  # Create tables on startup

    # Upstash Redis (trend cache). Cache is disabled when unset.
    UPSTASH_REDIS_URL: Optional[str] = None  # e.g., https://xxx.upstash.io
    UPSTASH_REDIS_TOKEN: Optional[str] = None
    TREND_CACHE_TTL_SECONDS: int = 3600

    # AWS Credentials
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_REGION: str = "us-east-1"

    # Azure Service Principal
    AZURE_TENANT_ID: Optional[str] = None
    AZURE_CLIENT_ID: Optional[str] = None
    AZURE_CLIENT_SECRET: Optional[str] = None
    AZURE_SUBSCRIPTION_ID: Optional[str] = None

    # GCP
    GCP_PROJECT_ID: Optional[str] = None
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = None  # Path to service account JSON
    GCP_BILLING_EXPORT_TABLE: Optional[str] = None  # project.dataset.table

    # Scanner Settings
    SCAN_PROVIDERS: list[str] = list(SUPPORTED_SCAN_PROVIDERS)
    PROVIDER_SCAN_TIMEOUT_SECONDS: int = 120
    PERSISTENCE_TIMEOUT_SECONDS: int = 30

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_DAILY_HOUR: int = 2
    SCHEDULER_WEEKLY_DAY: str = "sun"
    SCHEDULER_WEEKLY_HOUR: int = 3

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True
    )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache
def get_settings():
    """Returns a singleton instance of the application settings."""
    return Settings()
