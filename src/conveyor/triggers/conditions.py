"""Dot-path lookup and trigger condition matching."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

MISSING = object()


def get_path(data: Any, path: str, default: Any = MISSING) -> Any:
    """Follow a dot-separated path through mappings and sequences.

    Numeric segments index into lists. Returns ``default`` (the ``MISSING``
    sentinel unless given) when any segment is absent.

    Example:
        >>> get_path({"a": {"b": [10, 20]}}, "a.b.1")
        20
        >>> get_path({"a": 1}, "a.b") is MISSING
        True
    """
    if path == "":
        return data
    current = data
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return default
            current = current[segment]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            try:
                index = int(segment)
            except ValueError:
                return default
            if not -len(current) <= index < len(current):
                return default
            current = current[index]
        else:
            return default
    return current


def _equal(actual: Any, expected: Any) -> bool:
    # True == 1 in Python; conditions compare JSON values, where they differ.
    if isinstance(actual, bool) or isinstance(expected, bool):
        return type(actual) is type(expected) and actual == expected
    return actual == expected


def evaluate_condition(condition: Mapping[str, Any] | None, data: Any) -> bool:
    """True when every ``path: expected`` pair holds in ``data``.

    An empty condition always matches; a missing path never does.
    """
    if not condition:
        return True
    for path, expected in condition.items():
        actual = get_path(data, path)
        if actual is MISSING or not _equal(actual, expected):
            return False
    return True


__all__ = ["MISSING", "get_path", "evaluate_condition"]
