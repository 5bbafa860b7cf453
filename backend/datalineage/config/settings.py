"""
Centralized configuration for the lineage engine

Type-safe settings built on Pydantic Settings. Every group reads its own
environment prefix and an optional ``.env`` file (skipped inside Docker).

Environment variables:
- LINEAGE_GRAPHQL_*  endpoint, timeouts and page size
- LINEAGE_RETRY_*    retry/backoff tuning
- LINEAGE_CACHE_*    cache TTLs and storage backend
- LINEAGE_MODEL_*    classification rules and exclude patterns (JSON)
- LINEAGE_*          environment and logging
"""

import os
from enum import Enum
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from datalineage.models.filters import DEFAULT_CLASSIFICATION_RULES, ClassificationRule


def _settings_config(prefix: str) -> SettingsConfigDict:
    return SettingsConfigDict(
        env_prefix=prefix,
        env_file=".env" if not os.getenv("DOCKER_CONTAINER") else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class Environment(str, Enum):
    """Application environment types"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class CacheBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


class GraphQLSettings(BaseSettings):
    """GraphQL endpoint settings"""

    model_config = _settings_config("LINEAGE_GRAPHQL_")

    endpoint: str = Field(
        default="",
        description="GraphQL endpoint URL; empty means not configured"
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-request HTTP timeout"
    )
    page_size: int = Field(
        default=10000,
        ge=1,
        description="Row limit for the objects and edges queries"
    )
    ddl_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound for a single object definition lookup"
    )
    access_token: Optional[str] = Field(
        default=None,
        description="Static bearer token (tests and local runs)"
    )

    @field_validator("endpoint", mode="before")
    @classmethod
    def strip_endpoint(cls, v):
        return (v or "").strip()

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint)


class RetrySettings(BaseSettings):
    """Retry/backoff settings for cold-start tolerant fetches"""

    model_config = _settings_config("LINEAGE_RETRY_")

    max_attempts: int = Field(
        default=5,
        ge=1,
        description="Attempts per fetch, including the first"
    )
    initial_delay_ms: int = Field(
        default=2000,
        ge=0,
        description="Delay after the first failed attempt"
    )
    max_delay_ms: int = Field(
        default=10000,
        ge=0,
        description="Upper bound for any single delay"
    )
    backoff_multiplier: float = Field(
        default=1.5,
        ge=1.0,
        description="Growth factor between consecutive delays"
    )


class CacheSettings(BaseSettings):
    """Cache tier settings"""

    model_config = _settings_config("LINEAGE_CACHE_")

    data_ttl_minutes: int = Field(
        default=7 * 24 * 60,
        ge=1,
        description="Freshness window of the lineage data cache"
    )
    filter_ttl_hours: int = Field(
        default=24,
        ge=1,
        description="Lifetime of saved filter selections"
    )
    purge_max_age_days: int = Field(
        default=7,
        ge=1,
        description="Entries older than this are purged when storage is full"
    )
    backend: CacheBackend = Field(
        default=CacheBackend.MEMORY,
        description="Key-value store backing both caches"
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL when backend=redis"
    )


class ModelSettings(BaseSettings):
    """Classification rules and exclude patterns"""

    model_config = _settings_config("LINEAGE_MODEL_")

    classification_rules: List[ClassificationRule] = Field(
        default_factory=lambda: list(DEFAULT_CLASSIFICATION_RULES),
        description="Ordered data model classification rules"
    )
    exclude_patterns: List[str] = Field(
        default_factory=list,
        description="SQL LIKE style patterns hiding matching objects"
    )


class ApplicationSettings(BaseSettings):
    """Main settings - aggregates all other settings"""

    model_config = _settings_config("LINEAGE_")

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment"
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )
    log_json: bool = Field(
        default=False,
        description="Emit logs as JSON"
    )

    # Nested settings
    graphql: GraphQLSettings = Field(default_factory=GraphQLSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    model: ModelSettings = Field(default_factory=ModelSettings)

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_test(self) -> bool:
        return self.environment == Environment.TEST


settings = ApplicationSettings()


def get_settings() -> ApplicationSettings:
    """
    Get the global settings instance

    Returns:
        ApplicationSettings: The global settings instance
    """
    return settings


def reload_settings() -> ApplicationSettings:
    """
    Reload settings from environment (useful for testing)

    Returns:
        ApplicationSettings: New settings instance with reloaded values
    """
    global settings
    settings = ApplicationSettings()
    return settings
