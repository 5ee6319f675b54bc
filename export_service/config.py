"""
Export Service Configuration Module

Centralized configuration management with Pydantic validation.
All environment variables are validated at startup to catch misconfigurations early.
The PDF signing secret is mandatory: a missing secret stops the service from
starting instead of failing individual requests.
"""

import logging
from functools import lru_cache
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


logger = logging.getLogger(__name__)


class ExportSettings(BaseSettings):
    """
    Export service configuration with validation.

    All settings can be overridden via environment variables.
    Validation happens at startup to fail fast on misconfiguration.
    """

    # === Security ===
    pdf_signing_secret: Optional[str] = Field(
        default=None,
        min_length=32,
        description="HMAC secret for capability tickets (min 32 chars)"
    )
    environment: str = Field(
        default="development",
        description="Environment: development, staging, production"
    )
    admin_emails: str = Field(
        default="",
        description="Comma-separated list of e-mails granted admin export rules"
    )

    # === Identity provider ===
    firebase_project_id: Optional[str] = Field(
        default=None,
        description="Firebase project ID used to verify ID tokens"
    )

    # === Service URLs ===
    public_base_url: str = Field(
        default="http://localhost:8002",
        description="Base URL the headless browser uses to reach /render-view"
    )

    # === CORS ===
    cors_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins"
    )

    # === MongoDB ===
    mongodb_uri: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URI"
    )
    mongo_db_name: str = Field(
        default="careermind",
        description="MongoDB database name"
    )
    accounts_collection: str = Field(
        default="users",
        description="Collection holding account plan and export usage"
    )

    # === Quota ===
    usage_timezone: str = Field(
        default="UTC",
        description="Reference timezone for the daily export counter"
    )

    # === Rendering ===
    render_timeout_seconds: int = Field(
        default=60,
        ge=5,
        le=300,
        description="Navigation/capture timeout for the headless browser (5-300)"
    )
    playwright_headless: bool = Field(
        default=True,
        description="Run Chromium headless"
    )
    max_concurrent_renders: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Chromium sessions allowed at once; further exports wait for a slot (1-50)"
    )
    watermark_text: str = Field(
        default="CareerMindAI",
        min_length=1,
        max_length=64,
        description="Text of the diagonal watermark on free-plan exports"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is a known value."""
        allowed = {"development", "staging", "production"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"environment must be one of: {', '.join(sorted(allowed))}")
        return v_lower

    @field_validator("pdf_signing_secret")
    @classmethod
    def validate_secret_strength(cls, v: Optional[str]) -> Optional[str]:
        """Reject obviously weak signing secrets."""
        if v is None:
            return None
        weak_secrets = {"secret", "password", "changeme"}
        if v.lower() in weak_secrets or len(set(v)) < 8:
            raise ValueError("Signing secret is too weak - use a secure random string")
        return v

    @field_validator("public_base_url", "mongodb_uri")
    @classmethod
    def validate_url_format(cls, v: str) -> str:
        """Basic URL format validation."""
        if not v.startswith(("http://", "https://", "mongodb://", "mongodb+srv://")):
            raise ValueError(f"Invalid URL format: {v}")
        return v.rstrip("/")

    @field_validator("usage_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Ensure the reference timezone is resolvable."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        if not self.cors_origins:
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def admin_email_set(self) -> frozenset:
        """Normalized (lower-cased) admin e-mail allow-list."""
        return frozenset(
            email.strip().lower() for email in self.admin_emails.split(",") if email.strip()
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration is suitable for running.

        Returns list of warning/error messages.
        """
        issues = []

        if not self.pdf_signing_secret:
            issues.append("CRITICAL: PDF_SIGNING_SECRET is required")

        if self.is_production:
            if not self.firebase_project_id:
                issues.append("CRITICAL: FIREBASE_PROJECT_ID required in production")
            if "localhost" in self.public_base_url:
                issues.append("WARNING: PUBLIC_BASE_URL points at localhost in production")
            if "localhost" in self.mongodb_uri:
                issues.append("WARNING: Using localhost MongoDB in production")

        return issues

    class Config:
        env_prefix = ""  # No prefix, use exact env var names
        case_sensitive = False  # PDF_SIGNING_SECRET = pdf_signing_secret


@lru_cache()
def get_settings() -> ExportSettings:
    """
    Get cached settings instance.

    Settings are loaded once and cached for the process lifetime.
    """
    return ExportSettings()


def validate_config_on_startup() -> ExportSettings:
    """
    Validate configuration at application startup.

    Raises ValueError with details if config is invalid.
    Logs warnings for non-critical issues.
    """
    try:
        settings = get_settings()
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")

    issues = settings.validate_production_config()

    for issue in issues:
        if issue.startswith("CRITICAL"):
            raise ValueError(issue)
        else:
            logger.warning(issue)

    # Log loaded configuration (redact secrets)
    logger.info(f"Configuration loaded: environment={settings.environment}")
    logger.info(f"  public_base_url={settings.public_base_url}")
    logger.info(f"  usage_timezone={settings.usage_timezone}")
    logger.info(f"  render_timeout={settings.render_timeout_seconds}s")
    logger.info(f"  max_concurrent_renders={settings.max_concurrent_renders}")
    logger.info(f"  admin_emails={len(settings.admin_email_set)} configured")
    logger.info(f"  mongodb_uri={'*****' if 'localhost' not in settings.mongodb_uri else settings.mongodb_uri}")

    return settings
