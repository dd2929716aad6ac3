"""Tolerant field readers for decoded JSON log objects."""

from __future__ import annotations


def as_str(value: object) -> str:
    """Return ``value`` if it is a string, otherwise an empty string."""
    return value if isinstance(value, str) else ""


def as_optional_str(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def as_int(value: object) -> int:
    """Coerce a JSON scalar to ``int``; anything unusable becomes 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return 0
    return 0


def as_optional_int(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def as_dict(value: object) -> dict[str, object]:
    return value if isinstance(value, dict) else {}


def as_block_list(value: object) -> list[dict[str, object]]:
    """Keep only the object entries of a JSON array of content blocks."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]
