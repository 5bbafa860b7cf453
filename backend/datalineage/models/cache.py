"""
Cache entry models.

The JSON shape of these models together with ``CACHE_SCHEMA_VERSION`` is the
compatibility contract of stored caches. Bump the version to invalidate every
existing data cache at once.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .filters import FilterState, sorted_values
from .lineage import ExternalRefType, LineageObject, ObjectType, Source

CACHE_SCHEMA_VERSION = 1


class CacheEntry(BaseModel):
    payload: List[LineageObject] = Field(default_factory=list)
    sources: Optional[List[Source]] = None
    timestamp: float
    endpoint: str = ""
    source_id: Optional[int] = None
    schema_version: int = CACHE_SCHEMA_VERSION

    model_config = ConfigDict(extra="ignore")


class SourcesCacheEntry(BaseModel):
    """Item-scoped list of sources, kept so the source picker works offline."""

    sources: List[Source] = Field(default_factory=list)
    timestamp: float
    schema_version: int = CACHE_SCHEMA_VERSION

    model_config = ConfigDict(extra="ignore")


class CacheMetadata(BaseModel):
    timestamp: float
    node_count: int
    endpoint: str
    age_minutes: int
    is_stale: bool


class FilterCacheEntry(BaseModel):
    selected_schemas: List[str] = Field(default_factory=list)
    selected_object_types: List[ObjectType] = Field(default_factory=list)
    selected_classifications: List[str] = Field(default_factory=list)
    selected_external_types: List[ExternalRefType] = Field(default_factory=list)
    focus_schema: Optional[str] = None
    hide_isolated: bool = False
    timestamp: float = 0.0

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_state(cls, state: FilterState, timestamp: float) -> "FilterCacheEntry":
        return cls(
            selected_schemas=sorted(state.selected_schemas),
            selected_object_types=sorted_values(state.selected_object_types),
            selected_classifications=sorted(state.selected_classifications),
            selected_external_types=sorted_values(state.selected_external_types),
            focus_schema=state.focus_schema,
            hide_isolated=state.hide_isolated,
            timestamp=timestamp,
        )
