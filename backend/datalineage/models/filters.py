"""
Filter models: classification rules, filter state and filter commands.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .lineage import ExternalRefType, ObjectType


DEFAULT_RULE_NAME = "Other"


class ClassificationRule(BaseModel):
    """
    User-defined data model classification.

    Patterns are SQL ``LIKE`` style and matched against the object name:
    ``dim`` / ``dim%`` is a prefix match, ``%dim`` a suffix match and
    ``%dim%`` a substring match, all case-insensitive.
    """

    name: str = Field(..., min_length=1)
    patterns: Tuple[str, ...] = ()
    icon: str = "Circle"
    is_default: bool = False

    model_config = ConfigDict(frozen=True, extra="ignore")


DEFAULT_CLASSIFICATION_RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule(name="Dimension", patterns=("dim",), icon="Diamond"),
    ClassificationRule(name="Fact", patterns=("fact",), icon="Square"),
    ClassificationRule(name=DEFAULT_RULE_NAME, patterns=(), icon="Circle", is_default=True),
)


class FilterState(BaseModel):
    """
    Active filter selections.

    An empty ``selected_classifications`` means "not initialized" and shows
    every classification; an empty ``selected_external_types`` hides every
    external object.
    """

    selected_schemas: FrozenSet[str] = frozenset()
    selected_object_types: FrozenSet[ObjectType] = frozenset()
    selected_classifications: FrozenSet[str] = frozenset()
    selected_external_types: FrozenSet[ExternalRefType] = frozenset()
    exclude_patterns: Tuple[str, ...] = ()
    hide_isolated: bool = False
    focus_schema: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("exclude_patterns", mode="before")
    @classmethod
    def _strip_patterns(cls, value: Any):
        if value is None:
            return ()
        return tuple(p.strip() for p in value if isinstance(p, str) and p.strip())


class FilterAction(str, Enum):
    SET_SCHEMAS = "set_schemas"
    SELECT_ALL_SCHEMAS = "select_all_schemas"
    SELECT_NO_SCHEMAS = "select_no_schemas"
    SET_OBJECT_TYPES = "set_object_types"
    SELECT_ALL_OBJECT_TYPES = "select_all_object_types"
    SELECT_NO_OBJECT_TYPES = "select_no_object_types"
    SET_CLASSIFICATIONS = "set_classifications"
    SELECT_ALL_CLASSIFICATIONS = "select_all_classifications"
    SELECT_NO_CLASSIFICATIONS = "select_no_classifications"
    SET_EXTERNAL_TYPES = "set_external_types"
    SELECT_ALL_EXTERNAL_TYPES = "select_all_external_types"
    SELECT_NO_EXTERNAL_TYPES = "select_no_external_types"
    SET_EXCLUDE_PATTERNS = "set_exclude_patterns"
    SET_HIDE_ISOLATED = "set_hide_isolated"
    SET_FOCUS_SCHEMA = "set_focus_schema"
    RESET = "reset"
    RESTORE = "restore"


class CommandOrigin(str, Enum):
    """Who issued a filter command. Only user actions are persisted."""
    USER_ACTION = "user_action"
    EXTERNAL_RELOAD = "external_reload"


class FilterCommand(BaseModel):
    action: FilterAction
    value: Any = None
    origin: CommandOrigin = CommandOrigin.USER_ACTION

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @classmethod
    def user(cls, action: FilterAction, value: Any = None) -> "FilterCommand":
        return cls(action=action, value=value, origin=CommandOrigin.USER_ACTION)

    @classmethod
    def reload(cls, action: FilterAction, value: Any = None) -> "FilterCommand":
        return cls(action=action, value=value, origin=CommandOrigin.EXTERNAL_RELOAD)


def sorted_values(values) -> List[str]:
    """Stable list form of a selection set (enum members become their values)."""
    return sorted(v.value if isinstance(v, Enum) else str(v) for v in values)
