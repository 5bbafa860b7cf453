"""
Lineage graph models.

Goal:
- Give every warehouse object a composite identity (source id, object id).
- Keep the string form ``"{source_id}_{object_id}"`` at serialization edges only.
- Validate the raw GraphQL records before they are merged into nodes.
"""

from __future__ import annotations

import re
import sys
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, NamedTuple, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.functional_serializers import PlainSerializer
from pydantic.functional_validators import BeforeValidator


LineageDirection = Literal["upstream", "downstream", "both"]

# Sentinel level count selecting full-depth traversal.
UNBOUNDED_LEVELS = sys.maxsize

# Largest explicit level count; anything above must be UNBOUNDED_LEVELS.
MAX_TRACE_LEVELS = 99

_KEY_PATTERN = re.compile(r"^(-?\d+)_(-?\d+)$")


class ObjectKey(NamedTuple):
    """Composite identity of a lineage object."""

    source_id: int
    object_id: int

    def encode(self) -> str:
        return f"{self.source_id}_{self.object_id}"

    @classmethod
    def parse(cls, value: Any) -> "ObjectKey":
        if isinstance(value, ObjectKey):
            return value
        if isinstance(value, str):
            match = _KEY_PATTERN.match(value.strip())
            if not match:
                raise ValueError(f"Invalid object key: {value!r}")
            return cls(int(match.group(1)), int(match.group(2)))
        if isinstance(value, (tuple, list)) and len(value) == 2:
            source_id, object_id = value
            if isinstance(source_id, bool) or isinstance(object_id, bool):
                raise ValueError(f"Invalid object key: {value!r}")
            return cls(int(source_id), int(object_id))
        raise ValueError(f"Invalid object key: {value!r}")

    def __str__(self) -> str:
        return self.encode()


def _coerce_object_key(value: Any) -> ObjectKey:
    return ObjectKey.parse(value)


ObjectKeyField = Annotated[
    ObjectKey,
    BeforeValidator(_coerce_object_key),
    PlainSerializer(lambda key: key.encode(), return_type=str, when_used="json"),
]


class ObjectType(str, Enum):
    """Warehouse object types"""
    TABLE = "Table"
    VIEW = "View"
    STORED_PROCEDURE = "Stored Procedure"
    FUNCTION = "Function"
    EXTERNAL = "External"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalized = value.replace(" ", "").replace("_", "").lower()
            for member in cls:
                if member.value.replace(" ", "").lower() == normalized:
                    return member
        return None


# Canonical order used when presenting object type facets.
ALL_OBJECT_TYPES: Tuple[ObjectType, ...] = (
    ObjectType.TABLE,
    ObjectType.VIEW,
    ObjectType.STORED_PROCEDURE,
    ObjectType.FUNCTION,
)


class ExternalRefType(str, Enum):
    """External reference kinds reported by the ``ref_type`` column"""
    FILE = "FILE"
    OTHER_DB = "OTHER_DB"
    LINK = "LINK"


REF_TYPE_MAP: Dict[int, ExternalRefType] = {
    1: ExternalRefType.FILE,
    2: ExternalRefType.OTHER_DB,
    3: ExternalRefType.LINK,
}

ALL_EXTERNAL_TYPES: Tuple[ExternalRefType, ...] = (
    ExternalRefType.FILE,
    ExternalRefType.OTHER_DB,
    ExternalRefType.LINK,
)


def coerce_int(value: Any, default: int = 0) -> int:
    """GraphQL may hand numbers back as strings; anything unreadable is ``default``."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return default


class LineageObject(BaseModel):
    """One node of the lineage graph. Immutable once built."""

    key: ObjectKeyField
    name: str
    schema_name: str = ""
    object_type: ObjectType
    ddl_text: Optional[str] = None
    inputs: Tuple[ObjectKeyField, ...] = ()
    outputs: Tuple[ObjectKeyField, ...] = ()
    bidirectional_with: Tuple[ObjectKeyField, ...] = ()
    is_external: bool = False
    external_ref_type: Optional[ExternalRefType] = None
    ref_name: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="ignore")

    @field_validator("inputs", "outputs", "bidirectional_with", mode="after")
    @classmethod
    def _dedupe(cls, value: Tuple[ObjectKey, ...]) -> Tuple[ObjectKey, ...]:
        return tuple(dict.fromkeys(value))

    @model_validator(mode="after")
    def _no_self_reference(self) -> "LineageObject":
        if self.key in self.inputs or self.key in self.outputs:
            raise ValueError(f"Object {self.key.encode()} cannot reference itself")
        return self

    @property
    def id(self) -> str:
        return self.key.encode()

    @property
    def source_id(self) -> int:
        return self.key.source_id

    @property
    def object_id(self) -> int:
        return self.key.object_id

    @property
    def qualified_name(self) -> str:
        if self.schema_name:
            return f"{self.schema_name}.{self.name}"
        return self.name


class LineageEdge(BaseModel):
    """Directed edge between two objects present in the graph."""

    source: ObjectKeyField
    target: ObjectKeyField
    is_bidirectional: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def id(self) -> str:
        return f"{self.source.encode()}-{self.target.encode()}"


class TraceConfig(BaseModel):
    """Parameters of one user-initiated trace."""

    start_node_id: ObjectKeyField
    end_node_id: Optional[ObjectKeyField] = None
    upstream_levels: int = Field(default=1, ge=0)
    downstream_levels: int = Field(default=1, ge=0)

    model_config = ConfigDict(frozen=True)

    @field_validator("upstream_levels", "downstream_levels")
    @classmethod
    def _check_level_range(cls, value: int) -> int:
        if value > MAX_TRACE_LEVELS and value != UNBOUNDED_LEVELS:
            raise ValueError(f"levels must be at most {MAX_TRACE_LEVELS} or UNBOUNDED_LEVELS")
        return value

    @property
    def is_path_mode(self) -> bool:
        return self.end_node_id is not None


# ---------------------------------------------------------------------------
# Raw records returned by the GraphQL API
# ---------------------------------------------------------------------------


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Source(_Record):
    source_id: int
    database_name: str = ""
    description: Optional[str] = None
    is_active: bool = False
    created_at: Optional[datetime] = None

    @field_validator("is_active", mode="before")
    @classmethod
    def _coerce_active(cls, value):
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes"}
        return bool(value)


class ObjectRecord(_Record):
    source_id: int
    object_id: int
    schema_name: Optional[str] = None
    object_name: str
    object_type: str
    ref_type: int = 0
    ref_name: Optional[str] = None

    @field_validator("ref_type", mode="before")
    @classmethod
    def _coerce_ref_type(cls, value):
        return coerce_int(value, 0)


class EdgeRecord(_Record):
    source_id: Optional[int] = None
    source_object_id: int
    target_object_id: int
    is_bidirectional: bool = False


class DefinitionRecord(_Record):
    source_id: Optional[int] = None
    object_id: int
    definition: Optional[str] = None


class SearchResult(_Record):
    source_id: int
    object_id: int
    schema_name: Optional[str] = None
    object_name: str
    object_type: str
    ddl_text: Optional[str] = None
    snippet: Optional[str] = None

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.source_id, self.object_id)


class ConnectionTestResult(BaseModel):
    success: bool
    message: str
    source_count: Optional[int] = None
    object_count: Optional[int] = None
    edge_count: Optional[int] = None
    error: Optional[str] = None
    timestamp: datetime

    model_config = ConfigDict(extra="ignore")


def sort_sources(sources: List[Source]) -> List[Source]:
    """Alphabetical by database name, case-insensitive."""
    return sorted(sources, key=lambda s: (s.database_name or "").lower())
