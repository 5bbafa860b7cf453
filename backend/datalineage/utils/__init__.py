"""
Shared utilities for the lineage engine
"""

from .app_logger import configure_logging, get_logger
from .retry import RetryError, RetryPolicy, retry_async

__all__ = ["configure_logging", "get_logger", "RetryError", "RetryPolicy", "retry_async"]
