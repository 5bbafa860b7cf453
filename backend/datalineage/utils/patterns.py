"""
SQL LIKE style name patterns and data model classification.

Examples:
- ``dim`` or ``dim%``: starts with "dim"
- ``%dim``: ends with "dim"
- ``%dim%``: contains "dim"

Matching is always case-insensitive.
"""

import re
from functools import lru_cache
from typing import Iterable, List, Optional, Pattern, Sequence

from datalineage.models.filters import (
    DEFAULT_CLASSIFICATION_RULES,
    DEFAULT_RULE_NAME,
    ClassificationRule,
)


@lru_cache(maxsize=512)
def pattern_to_regex(pattern: str) -> Pattern[str]:
    has_start_wildcard = pattern.startswith("%")
    has_end_wildcard = len(pattern) > 1 and pattern.endswith("%")

    core = pattern
    if has_start_wildcard:
        core = core[1:]
    if has_end_wildcard:
        core = core[:-1]
    escaped = re.escape(core)

    if has_start_wildcard and has_end_wildcard:
        regex = escaped
    elif has_start_wildcard:
        regex = escaped + "$"
    else:
        regex = "^" + escaped
    return re.compile(regex, re.IGNORECASE)


def matches_pattern(value: str, pattern: str) -> bool:
    if not pattern:
        return False
    return pattern_to_regex(pattern).search(value or "") is not None


def matches_any(values: Iterable[str], patterns: Sequence[str]) -> bool:
    values = list(values)
    return any(matches_pattern(value, pattern) for pattern in patterns for value in values)


def classify_object(object_name: str, rules: Sequence[ClassificationRule]) -> ClassificationRule:
    """First non-default rule with a matching pattern wins; otherwise the default rule."""
    for rule in rules:
        if rule.is_default:
            continue
        for pattern in rule.patterns:
            if matches_pattern(object_name, pattern):
                return rule

    default = default_rule(rules)
    if default is not None:
        return default
    return ClassificationRule(name=DEFAULT_RULE_NAME, patterns=(), is_default=True)


def default_rule(rules: Sequence[ClassificationRule]) -> Optional[ClassificationRule]:
    return next((rule for rule in rules if rule.is_default), None)


def migrate_pattern(pattern: str) -> str:
    """Strip legacy regex anchors and trailing wildcards from a stored pattern."""
    cleaned = pattern.strip()
    if cleaned.startswith("^"):
        cleaned = cleaned[1:]
    if cleaned.endswith("$"):
        cleaned = cleaned[:-1]
    if cleaned.endswith(".*"):
        cleaned = cleaned[:-2]
    elif cleaned.endswith("*"):
        cleaned = cleaned[:-1]
    return cleaned.strip()


def normalize_rules(rules: Optional[Sequence[ClassificationRule]]) -> List[ClassificationRule]:
    """
    Clean stored rules and guarantee exactly one default rule.

    - ``;`` joined patterns are split and legacy regex syntax is stripped
    - only the first rule flagged as default stays default
    - an "Other" rule becomes the default when none is flagged, or one is appended
    """
    if not rules:
        return list(DEFAULT_CLASSIFICATION_RULES)

    normalized: List[ClassificationRule] = []
    seen_default = False
    for rule in rules:
        split = [part.strip() for raw in rule.patterns for part in raw.split(";")]
        patterns = tuple(p for p in (migrate_pattern(part) for part in split) if p)
        is_default = rule.is_default and not seen_default
        seen_default = seen_default or is_default
        normalized.append(rule.model_copy(update={"patterns": patterns, "is_default": is_default}))

    if not seen_default:
        other_index = next(
            (i for i, rule in enumerate(normalized) if rule.name.lower() == DEFAULT_RULE_NAME.lower()),
            None,
        )
        if other_index is not None:
            normalized[other_index] = normalized[other_index].model_copy(update={"is_default": True})
        else:
            normalized.append(ClassificationRule(name=DEFAULT_RULE_NAME, patterns=(), is_default=True))

    return normalized


def remove_rule(rules: Sequence[ClassificationRule], name: str) -> List[ClassificationRule]:
    """Drop the named rule. The default rule cannot be removed."""
    target = next((rule for rule in rules if rule.name == name), None)
    if target is None:
        raise KeyError(name)
    if target.is_default:
        raise ValueError(f"Default classification '{name}' cannot be removed")
    return [rule for rule in rules if rule.name != name]

