"""
Exception hierarchy for the lineage engine
"""

from .base import DomainException
from .lineage import (
    AuthenticationError,
    CacheCorruptionError,
    CacheUnavailableError,
    ConfigurationError,
    GraphQLError,
    LineageError,
    LineageFetchError,
    StorageQuotaError,
    TransportError,
    endpoint_host,
)

__all__ = [
    # Base
    "DomainException",
    "LineageError",
    # Fetch
    "ConfigurationError",
    "AuthenticationError",
    "TransportError",
    "GraphQLError",
    "LineageFetchError",
    # Cache
    "CacheCorruptionError",
    "StorageQuotaError",
    "CacheUnavailableError",
    # Helpers
    "endpoint_host",
]
