"""
Bank Reconciliation Service - Configuration Management

Centralized configuration for environment variables and deployment settings.
This module ensures:
- No hardcoded secrets
- Environment-specific settings (dev/staging/prod)
- Candidate window tuning for the matching engine
"""

from decimal import Decimal
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./reconciliation.db",
        description="SQLAlchemy async URL (postgresql+asyncpg in production)"
    )
    DATABASE_POOL_SIZE: int = Field(default=5)
    DATABASE_MAX_OVERFLOW: int = Field(default=10)
    DATABASE_SSL: bool = Field(
        default=False,
        description="Require SSL on PostgreSQL connections"
    )

    # ==================== AUTHENTICATION ====================
    INTERNAL_API_KEY: str = Field(
        default="",
        description="Primary API key for internal callers"
    )
    INTERNAL_API_KEYS: str = Field(
        default="",
        description="Comma-separated additional keys (for rotation)"
    )

    # ==================== CORS ====================
    CORS_ORIGINS: str = Field(
        default="",
        description="Comma-separated list of allowed origins"
    )

    # ==================== RECONCILIATION ====================
    RECON_AMOUNT_WINDOW: Decimal = Field(
        default=Decimal("1.00"),
        description="Candidate pool amount window (+/-) around the bank amount"
    )
    RECON_DATE_WINDOW_DAYS: int = Field(
        default=5,
        description="Candidate pool date window (+/- days) around the bank date"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    SENTRY_TRACES_SAMPLE_RATE: float = Field(
        default=0.1,
        description="Fraction of requests traced in production (0.0 outside production)"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(
        default="Bank Statement Reconciliation API",
        description="API title for OpenAPI docs"
    )
    API_VERSION: str = Field(
        default="1.0.0",
        description="API version"
    )

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    @property
    def uses_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS_ORIGINS into a list, adding localhost outside production."""
        if self.CORS_ORIGINS and self.CORS_ORIGINS != "*":
            origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
        else:
            origins = []

        if not self.is_production:
            origins.extend([
                "http://localhost:3000",
                "http://localhost:5173",
                "http://127.0.0.1:5173",
            ])

        return sorted(set(origins))

    @property
    def internal_api_keys(self) -> List[str]:
        """All accepted internal API keys, primary first."""
        keys = []
        if self.INTERNAL_API_KEY.strip():
            keys.append(self.INTERNAL_API_KEY.strip())
        for key in self.INTERNAL_API_KEYS.split(","):
            key = key.strip()
            if key and key not in keys:
                keys.append(key)
        return keys

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required")

        if self.RECON_AMOUNT_WINDOW < 0:
            errors.append("RECON_AMOUNT_WINDOW cannot be negative")

        if self.RECON_DATE_WINDOW_DAYS < 0:
            errors.append("RECON_DATE_WINDOW_DAYS cannot be negative")

        if self.is_production:
            if self.uses_sqlite:
                errors.append("DATABASE_URL cannot point to SQLite in production")

            if not self.internal_api_keys:
                errors.append("INTERNAL_API_KEY is required in production")

            if self.CORS_ORIGINS == "*":
                errors.append("CORS_ORIGINS cannot be '*' in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Settings singleton. Production refuses to start with an invalid
    configuration; other environments only log what is wrong.
    """
    settings = Settings()

    errors = settings.validate_production_config()
    if errors and settings.is_production:
        raise ValueError(f"Production configuration invalid: {', '.join(errors)}")
    for error in errors:
        logger.warning(f"Configuration problem ({settings.ENVIRONMENT}): {error}")

    return settings


def get_cors_config() -> dict:
    """Keyword arguments for starlette's CORSMiddleware."""
    settings = get_settings()

    # Only internal callers hit the reconciliation routes; no cookies involved
    return {
        "allow_origins": settings.cors_origins_list,
        "allow_credentials": False,
        "allow_methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": ["Content-Type", "Accept", "X-Internal-Api-Key", "X-Request-ID"],
        "expose_headers": ["X-Request-ID", "X-Process-Time"],
        "max_age": 600,
    }


def validate_environment() -> dict:
    """
    Validate all required environment variables.

    Returns a status dict with validation results.
    """
    settings = get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
        "variables": {}
    }

    if not settings.internal_api_keys:
        status["warnings"].append("No internal API key set - reconciliation endpoints will reject calls")
        status["variables"]["INTERNAL_API_KEY"] = "⚠ Not set"
    else:
        status["variables"]["INTERNAL_API_KEY"] = "✓ Set"

    if not settings.SENTRY_DSN:
        status["warnings"].append("Error tracking disabled")
        status["variables"]["SENTRY_DSN"] = "⚠ Not set"
    else:
        status["variables"]["SENTRY_DSN"] = "✓ Set"

    errors = settings.validate_production_config()
    if errors:
        status["errors"].extend(errors)
        status["valid"] = False

    return status
