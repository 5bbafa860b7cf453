"""
Lineage engine exceptions.

Only ``ConfigurationError``, ``GraphQLError`` and ``LineageFetchError`` are
expected to reach callers of the fetch orchestrator. ``AuthenticationError``
and ``TransportError`` are raised per attempt and consumed by the retry loop.
The cache errors never leave the cache layer.
"""

from typing import List, Optional
from urllib.parse import urlparse

from .base import DomainException


def endpoint_host(endpoint: Optional[str]) -> Optional[str]:
    """Host part of an endpoint URL, used to enrich diagnostics."""
    if not endpoint:
        return None
    try:
        parsed = urlparse(endpoint)
    except ValueError:
        return None
    return parsed.hostname or None


class LineageError(DomainException):
    """Base class for lineage engine errors"""

    def __init__(self, message: str, code: str = "LINEAGE_ERROR", details: dict = None):
        super().__init__(message=message, code=code, details=details)


class ConfigurationError(LineageError):
    """Endpoint (or another required setting) is not configured"""

    def __init__(self, message: str, setting: str = None):
        super().__init__(
            message=message,
            code="CONFIGURATION_ERROR",
            details={"setting": setting} if setting else {},
        )


class AuthenticationError(LineageError):
    """Token acquisition failed"""

    def __init__(self, message: str, cause: Exception = None):
        super().__init__(
            message=f"Failed to acquire access token: {message}",
            code="AUTHENTICATION_ERROR",
            details={"cause": type(cause).__name__} if cause else {},
        )


class TransportError(LineageError):
    """Non-2xx response, network failure or unreadable response body"""

    def __init__(self, message: str, status_code: Optional[int] = None, endpoint: Optional[str] = None):
        details = {}
        if status_code is not None:
            details["status_code"] = status_code
        host = endpoint_host(endpoint)
        if host:
            details["endpoint_host"] = host
        super().__init__(message=message, code="TRANSPORT_ERROR", details=details)
        self.status_code = status_code
        self.endpoint = endpoint


class GraphQLError(LineageError):
    """Application-level ``errors`` array in an otherwise successful response"""

    def __init__(self, messages: List[str]):
        self.messages = [m for m in messages if m] or ["Unknown GraphQL error"]
        super().__init__(
            message=f"GraphQL errors: {'; '.join(self.messages)}",
            code="GRAPHQL_ERROR",
            details={"messages": list(self.messages)},
        )


class LineageFetchError(LineageError):
    """Retries exhausted; carries the last underlying error"""

    def __init__(
        self,
        message: str,
        last_error: Optional[Exception] = None,
        attempts: int = 0,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        details = {"attempts": attempts}
        host = endpoint_host(endpoint)
        if host:
            details["endpoint_host"] = host
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message=message, code="LINEAGE_FETCH_ERROR", details=details)
        self.last_error = last_error
        self.attempts = attempts
        self.endpoint = endpoint
        self.status_code = status_code


class CacheCorruptionError(LineageError):
    """Stored cache entry could not be decoded or validated"""

    def __init__(self, key: str, reason: str):
        super().__init__(
            message=f"Corrupt cache entry {key}: {reason}",
            code="CACHE_CORRUPTION",
            details={"key": key},
        )
        self.key = key


class StorageQuotaError(LineageError):
    """Key-value store refused a write because it is full"""

    def __init__(self, message: str = "Storage quota exceeded", key: str = None):
        super().__init__(
            message=message,
            code="STORAGE_QUOTA_EXCEEDED",
            details={"key": key} if key else {},
        )
        self.key = key


class CacheUnavailableError(LineageError):
    """Key-value store could not be reached"""

    def __init__(self, message: str, key: str = None):
        super().__init__(
            message=message,
            code="CACHE_UNAVAILABLE",
            details={"key": key} if key else {},
        )
        self.key = key
