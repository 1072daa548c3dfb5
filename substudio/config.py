"""
Configuration module for the Subtitle Studio API.

This module centralizes all environment variables, constants, and runtime configuration
using pydantic-settings for type-safe configuration management.
"""

from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Deployment environment
    environment: str = Field(
        default="development",
        validation_alias="ENVIRONMENT",
        description="Deployment environment (development, staging, production)"
    )

    # CORS Configuration
    allowed_origin: str = Field(
        default="http://localhost:3000",
        validation_alias="ALLOWED_ORIGIN",
        description="Allowed CORS origin for API requests"
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level name for the application logger"
    )

    # CSRF Protection
    csrf_protection_enabled: bool = Field(
        default=True,
        validation_alias="CSRF_PROTECTION_ENABLED",
        description="Require a CSRF token on state-changing /api/ requests"
    )

    csrf_exempt_routes: List[str] = Field(
        default=["/api/csrf", "/api/auth/callback"],
        validation_alias="CSRF_EXEMPT_ROUTES",
        description="Path prefixes that skip CSRF validation (JSON list)"
    )

    # Client Configuration (used by scripts/csrf_client.py)
    api_base_url: str = Field(
        default="http://localhost:8000",
        validation_alias="API_BASE_URL",
        description="Base URL of the API the CSRF client talks to"
    )

    csrf_token_endpoint: str = Field(
        default="/api/csrf",
        validation_alias="CSRF_TOKEN_ENDPOINT",
        description="Path of the CSRF token issuance endpoint"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()


# Initialize settings
settings = get_settings()

ALLOWED_ORIGIN = settings.allowed_origin
LOG_LEVEL = settings.log_level

# CSRF configuration
CSRF_PROTECTION_ENABLED = settings.csrf_protection_enabled
CSRF_EXEMPT_ROUTES = settings.csrf_exempt_routes

if not CSRF_PROTECTION_ENABLED:
    print("WARNING: CSRF protection disabled (CSRF_PROTECTION_ENABLED=false)")
