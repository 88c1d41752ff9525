"""
Provider Utility Module

Helpers for reading the first set value out of several layered
configuration sources.
"""

from typing import Any, List, Mapping, Optional, Sequence


def get_path(source: Any, path: Sequence[str]) -> Any:
    """
    Walk ``path`` through nested mappings.

    Returns None as soon as a segment is missing or a value is not a mapping.
    """
    value = source
    for segment in path:
        if not isinstance(value, Mapping):
            return None
        value = value.get(segment)
    return value


def get_values(source: Mapping[str, Any], paths: Sequence[Sequence[str]]) -> List[dict]:
    """
    Resolve each path into ``{"path": path, "value": value}``, preserving order.

    Args:
        source: nested mapping holding every layer (options, env, provider, ...)
        paths: key paths, highest precedence first

    Returns:
        One entry per path; ``value`` is None when the path is absent.
    """
    return [{"path": list(path), "value": get_path(source, path)} for path in paths]


def first_value(values: Sequence[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    """
    Return the first entry holding a set value.

    None and empty strings count as unset. When no entry qualifies the last
    one is returned so callers can still report which path was consulted.
    """
    for entry in values:
        if not is_blank(entry.get("value")):
            return entry
    return values[-1] if values else None


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")
