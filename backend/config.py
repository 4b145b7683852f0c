"""
Expense Reconciler - Configuration Management

Centralized configuration for environment variables and reconciliation rules.
This module ensures:
- No hardcoded secrets
- No missing required variables
- Environment-specific settings (dev/staging/prod)
- One source for every reconciliation threshold and toggle
"""

from typing import List, Optional
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
        extra="ignore"
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
        default="",
        description="PostgreSQL connection URL for the sync audit trail (optional)"
    )

    # ==================== EXPENSE BACKEND ====================
    EXPENSE_BACKEND_URL: str = Field(
        default="http://localhost:3003/api",
        description="Base URL of the expense backend (application of record)"
    )
    EXPENSE_BACKEND_TOKEN: Optional[str] = Field(
        default=None,
        description="Bearer token for the expense backend"
    )
    EXPENSE_BACKEND_TIMEOUT: float = Field(
        default=30.0,
        description="HTTP timeout for expense backend requests, seconds"
    )

    # ==================== MATCHING ====================
    MATCH_AMOUNT_TOLERANCE: float = Field(default=0.01, ge=0)
    MATCH_REQUIRE_SAME_DATE: bool = Field(default=True)
    MATCH_MIN_DESCRIPTION_SIMILARITY: float = Field(default=0.5, ge=0, le=1)

    # ==================== PLANNING ====================
    RECON_MIN_AMOUNT: float = Field(default=1.0, ge=0)
    RECON_MAX_AUTO_SYNC_AMOUNT: float = Field(default=10000.0, gt=0)
    RECON_ALLOW_UNDATED_EXPENSES: bool = Field(default=True)
    RECON_DUPLICATE_DETECTION: bool = Field(
        default=True,
        description="Reject source expenses duplicating an existing target expense"
    )
    RECON_DEFAULT_CATEGORY: str = Field(default="Other")

    # ==================== SYNC EXECUTION ====================
    SYNC_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)
    SYNC_MAX_RETRIES: int = Field(default=2, ge=0)
    SYNC_BASE_DELAY_MS: int = Field(default=1000, ge=0)
    SYNC_MAX_DELAY_MS: int = Field(default=30000, ge=0)
    SYNC_INTER_ACTION_DELAY_MS: int = Field(default=100, ge=0)
    IDEMPOTENCY_TTL_SECONDS: int = Field(default=24 * 60 * 60, gt=0)

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )
    LOG_JSON: bool = Field(
        default=True,
        description="Emit JSON logs (disable for local reading)"
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

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if not self.EXPENSE_BACKEND_URL:
            errors.append("EXPENSE_BACKEND_URL is required")

        if self.RECON_MIN_AMOUNT > self.RECON_MAX_AUTO_SYNC_AMOUNT:
            errors.append("RECON_MIN_AMOUNT cannot exceed RECON_MAX_AUTO_SYNC_AMOUNT")

        if self.SYNC_BASE_DELAY_MS > self.SYNC_MAX_DELAY_MS:
            errors.append("SYNC_BASE_DELAY_MS cannot exceed SYNC_MAX_DELAY_MS")

        if self.is_production:
            if not self.EXPENSE_BACKEND_TOKEN:
                errors.append("EXPENSE_BACKEND_TOKEN is required in production")

            if "localhost" in self.EXPENSE_BACKEND_URL.lower():
                errors.append("EXPENSE_BACKEND_URL cannot point to localhost in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.debug_enabled}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


# Export settings instance for convenience
settings = get_settings()
