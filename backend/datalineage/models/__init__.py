"""
Lineage engine models
"""

from .cache import *
from .filters import *
from .lineage import *
from .progress import *

__all__ = [
    # Lineage
    "ObjectKey",
    "ObjectType",
    "ExternalRefType",
    "LineageObject",
    "LineageEdge",
    "TraceConfig",
    "UNBOUNDED_LEVELS",
    "MAX_TRACE_LEVELS",
    "ALL_OBJECT_TYPES",
    "ALL_EXTERNAL_TYPES",
    "REF_TYPE_MAP",
    "Source",
    "ObjectRecord",
    "EdgeRecord",
    "DefinitionRecord",
    "SearchResult",
    "ConnectionTestResult",
    # Progress
    "ConnectionPhase",
    "ConnectionProgress",
    "ProgressCallback",
    "PHASE_MESSAGES",
    # Filters
    "ClassificationRule",
    "DEFAULT_CLASSIFICATION_RULES",
    "FilterState",
    "FilterAction",
    "FilterCommand",
    "CommandOrigin",
    # Cache
    "CACHE_SCHEMA_VERSION",
    "CacheEntry",
    "CacheMetadata",
    "SourcesCacheEntry",
    "FilterCacheEntry",
]
