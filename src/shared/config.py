"""
Shared Configuration - Offline Cache Settings and Environment Management
Centralized configuration management for the offline resource cache.

This module provides:
- Environment-based configuration
- Type-safe settings with validation
- Cache namespace naming and versioning
- Precache asset list (supplied at build/deploy time)
- Storage backend and network configuration
"""
import re
from enum import Enum
from functools import lru_cache
from typing import Annotated, Dict, List, Optional
from urllib.parse import urlsplit

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Environment(str, Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StorageBackendType(str, Enum):
    """Cache storage backends."""
    MEMORY = "memory"
    REDIS = "redis"


DEFAULT_PRECACHE_ASSETS = [
    "/",
    "/index.html",
    "/manifest.json",
    "/assets/css/styles.css",
    "/assets/js/app.js",
    "/data/projects.json",
    "/data/skills.json",
]

_VERSION_TOKEN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._]*$")


def _split_csv(v):
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return v


class OfflineCacheSettings(BaseSettings):
    """Offline cache settings."""

    model_config = SettingsConfigDict(
        env_prefix="OFFLINE_CACHE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    environment: Environment = Environment.DEVELOPMENT
    origin: str = Field("http://localhost:8000", description="Origin of the site the worker controls")

    # Namespace naming
    cache_version: str = Field("v1", description="Version token, changes on every deploy")
    cache_prefix: str = Field("", description="Optional prefix for namespace names")

    # Precache and routing
    precache_assets: Annotated[List[str], NoDecode] = Field(default_factory=lambda: list(DEFAULT_PRECACHE_ASSETS))
    api_prefixes: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["/api/"])

    # Network
    network_timeout: float = 10.0
    api_network_timeout: float = 3.0

    # Storage
    storage_backend: StorageBackendType = StorageBackendType.MEMORY
    redis_url: str = "redis://localhost:6379"
    redis_db: int = 0
    redis_key_prefix: str = "offline-cache"

    # Limits
    static_max_entries: Optional[int] = 50
    dynamic_max_entries: Optional[int] = 100
    image_max_entries: Optional[int] = 200
    static_max_age: Optional[int] = 7 * 24 * 60 * 60  # 7 days
    dynamic_max_age: Optional[int] = 24 * 60 * 60  # 1 day
    image_max_age: Optional[int] = 30 * 24 * 60 * 60  # 30 days

    # Logging
    log_level: LogLevel = LogLevel.INFO
    log_format: str = "colored"

    @field_validator("precache_assets", "api_prefixes", mode="before")
    @classmethod
    def parse_csv_lists(cls, v):
        return _split_csv(v)

    @field_validator("origin")
    @classmethod
    def validate_origin(cls, v):
        parts = urlsplit(v)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError("Origin must be an absolute http(s) URL")
        return f"{parts.scheme}://{parts.netloc}"

    @field_validator("cache_version")
    @classmethod
    def validate_cache_version(cls, v):
        if not _VERSION_TOKEN.match(v):
            raise ValueError("Cache version must be a token such as 'v3' or '3.0.0'")
        return v

    @field_validator("network_timeout", "api_network_timeout")
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("Timeouts must be positive")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        if v not in ("json", "colored", "standard"):
            raise ValueError("Log format must be one of: json, colored, standard")
        return v

    def max_entries(self) -> Dict[str, Optional[int]]:
        """Max entries keyed by namespace kind."""
        return {
            "static": self.static_max_entries,
            "dynamic": self.dynamic_max_entries,
            "image": self.image_max_entries,
        }

    def max_ages(self) -> Dict[str, Optional[int]]:
        """Max entry age in seconds keyed by namespace kind."""
        return {
            "static": self.static_max_age,
            "dynamic": self.dynamic_max_age,
            "image": self.image_max_age,
        }

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION


@lru_cache()
def get_settings() -> OfflineCacheSettings:
    """Get the process-wide settings instance."""
    return OfflineCacheSettings()


def get_config_summary(settings: Optional[OfflineCacheSettings] = None) -> dict:
    """
    Get a summary of the current configuration.

    Returns:
        Dictionary with configuration summary
    """
    settings = settings or get_settings()
    return {
        "environment": settings.environment.value,
        "origin": settings.origin,
        "cache_version": settings.cache_version,
        "precache_assets": len(settings.precache_assets),
        "storage_backend": settings.storage_backend.value,
        "max_entries": settings.max_entries(),
        "log_level": settings.log_level.value,
    }
