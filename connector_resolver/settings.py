"""
Connector Resolver Settings - Configuration management using Pydantic Settings.

Loads configuration from environment variables and .env files.
"""

from pathlib import Path
from typing import List

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

# Find project root (where .env file is located)
PROJECT_ROOT = Path(__file__).parent.parent

DEFAULT_KNOWN_CATEGORIES = [
    "action",
    "communication",
    "data",
    "database",
    "http",
    "integration",
    "logic",
    "notification",
    "transform",
    "trigger",
]


class ResolverSettings(BaseSettings):
    """
    Connector resolver configuration settings.

    Settings are loaded from:
    1. Environment variables (highest priority)
    2. .env file in current directory
    3. Default values (lowest priority)
    """

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="CR_",  # All resolver env vars must start with CR_
    )

    # Registry Configuration
    catalog_path: str = Field(
        default="connectors.catalog.json",
        description="Path to the JSON connector catalog (env: CR_CATALOG_PATH)",
    )

    registry_url: str | None = Field(
        default=None,
        description="Base URL of a remote connector registry; overrides catalog_path (env: CR_REGISTRY_URL)",
    )

    http_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for remote registry requests (env: CR_HTTP_TIMEOUT_SECONDS)",
    )

    cache_ttl_seconds: int = Field(
        default=300,
        description="Read-through cache lifetime for registry lookups (env: CR_CACHE_TTL_SECONDS)",
    )

    # Resolution Configuration
    default_strategy: str = Field(
        default="HighestCompatible",
        description="Strategy used when a request does not name one (env: CR_DEFAULT_STRATEGY)",
    )

    solver_timeout_seconds: float | None = Field(
        default=30.0,
        description="Deadline for a single search before it is cancelled (env: CR_SOLVER_TIMEOUT_SECONDS)",
    )

    known_categories: List[str] = Field(
        default_factory=lambda: list(DEFAULT_KNOWN_CATEGORIES),
        description="Categories accepted without a validation warning (env: CR_KNOWN_CATEGORIES, JSON list)",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR) (env: CR_LOG_LEVEL)",
    )

    # Service Configuration
    service_host: str = Field(
        default="127.0.0.1",
        description="Bind address for the HTTP service (env: CR_SERVICE_HOST)",
    )

    service_port: int = Field(
        default=8080,
        description="Port for the HTTP service (env: CR_SERVICE_PORT)",
    )

    @field_validator("default_strategy")
    @classmethod
    def validate_default_strategy(cls, v: str) -> str:
        """Validate strategy name against the known strategies."""
        from .models import ResolutionStrategy

        valid = [strategy.value for strategy in ResolutionStrategy]
        if v not in valid:
            raise ValueError(f"Invalid strategy: {v}. Must be one of {valid}")
        return v


def _load_settings() -> ResolverSettings:
    """Build settings, reporting invalid values as ConfigurationError."""
    try:
        return ResolverSettings()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid resolver settings: {e}") from e


# Global settings instance
_settings: ResolverSettings | None = None


def get_settings() -> ResolverSettings:
    """
    Get the global settings instance.

    Creates the settings instance on first call, then returns cached instance.

    Returns:
        ResolverSettings instance
    """
    global _settings
    if _settings is None:
        _settings = _load_settings()
    return _settings


def reload_settings() -> ResolverSettings:
    """
    Reload settings from environment/files.

    Useful for testing or when .env file changes.

    Returns:
        Fresh ResolverSettings instance
    """
    global _settings
    _settings = _load_settings()
    return _settings
