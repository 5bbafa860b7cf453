"""
Configuration package for the lineage engine

Usage:
    from datalineage.config import get_settings

    settings = get_settings()
    endpoint = settings.graphql.endpoint
    policy = RetryPolicy.from_settings(settings.retry)
"""

from .settings import (
    ApplicationSettings,
    CacheBackend,
    CacheSettings,
    Environment,
    GraphQLSettings,
    ModelSettings,
    RetrySettings,
    get_settings,
    reload_settings,
)

__all__ = [
    "ApplicationSettings",
    "CacheBackend",
    "CacheSettings",
    "Environment",
    "GraphQLSettings",
    "ModelSettings",
    "RetrySettings",
    "get_settings",
    "reload_settings",
]
