"""Sanitization of raw store filters and updates before they reach SQL."""

import re
import unicodedata
from typing import Any, FrozenSet

CONTROL_CHARS_RE = re.compile("[\u0000-\u001f\u007f-\u009f]")

FILTER_OPERATORS: FrozenSet[str] = frozenset(
    {
        "$and",
        "$or",
        "$nor",
        "$eq",
        "$ne",
        "$in",
        "$nin",
        "$gt",
        "$gte",
        "$lt",
        "$lte",
        "$exists",
        "$regex",
        "$elemMatch",
        "$size",
        "$all",
        "$not",
        "$type",
        "$geoWithin",
        "$geoIntersects",
        "$near",
        "$nearSphere",
    }
)

UPDATE_OPERATORS: FrozenSet[str] = frozenset(
    {
        "$set",
        "$setOnInsert",
        "$unset",
        "$inc",
        "$mul",
        "$min",
        "$max",
        "$rename",
        "$currentDate",
        "$addToSet",
        "$push",
        "$pull",
        "$pullAll",
        "$pop",
        "$bit",
        "$each",
        "$position",
        "$slice",
        "$sort",
    }
)

UNSAFE_KEYS: FrozenSet[str] = frozenset({"__proto__", "constructor", "prototype"})


class QueryGuardError(ValueError):
    """Raised when a filter or update carries an unsafe key or operator."""


class UnsupportedQueryError(QueryGuardError):
    """Raised for an allowed operator that the SQLite store does not implement."""


def sanitize_value(value: Any) -> Any:
    """Recursively NFKC-normalize strings and strip control characters."""
    if isinstance(value, (list, tuple)):
        return [sanitize_value(entry) for entry in value]
    if isinstance(value, dict):
        return {key: sanitize_value(nested) for key, nested in value.items()}
    if isinstance(value, str):
        return CONTROL_CHARS_RE.sub("", unicodedata.normalize("NFKC", value))
    return value


def _assert_allowed_operators(value: Any, allowed: FrozenSet[str], path: str) -> None:
    if isinstance(value, list):
        for index, item in enumerate(value):
            _assert_allowed_operators(item, allowed, f"{path}[{index}]")
        return

    if not isinstance(value, dict):
        return

    for key, nested in value.items():
        if not isinstance(key, str):
            raise QueryGuardError(f'Unsafe property name "{key!r}" detected at {path}')
        if key in UNSAFE_KEYS or (key.startswith("__") and key.endswith("__")):
            raise QueryGuardError(f'Unsafe property name "{key}" detected at {path}')
        if key.startswith("$") and key not in allowed:
            raise QueryGuardError(
                f'Disallowed MongoDB operator "{key}" detected at {path}'
            )
        _assert_allowed_operators(nested, allowed, f"{path}.{key}")


def guard_filter(query_filter: Any) -> Any:
    """Return a sanitized copy of a filter, rejecting non-filter operators."""
    sanitized = sanitize_value(query_filter)
    _assert_allowed_operators(sanitized, FILTER_OPERATORS, "filter")
    return sanitized


def guard_update(update: Any) -> Any:
    """Return a sanitized copy of an update; filter operators are allowed too."""
    sanitized = sanitize_value(update)
    _assert_allowed_operators(sanitized, FILTER_OPERATORS | UPDATE_OPERATORS, "update")
    return sanitized
