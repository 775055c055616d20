"""Shared parsing helpers for config and task payload value normalization."""

from __future__ import annotations


_TRUE_BOOLEAN_TOKENS = frozenset({"1", "true", "yes", "on"})
_FALSE_BOOLEAN_TOKENS = frozenset({"0", "false", "no", "off"})
_DEFAULT_IMAGE_EDGE = 1024


def normalize_optional_string(value: object) -> str | None:
    """Normalize an optional value to a stripped non-empty string.

    Args:
        value: Arbitrary input value.

    Returns:
        Stripped string value, or `None` when the value is empty after trimming.
    """

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text


def parse_permissive_boolean(value: object) -> bool | None:
    """Parse a permissive boolean token and return `None` for invalid values."""

    if isinstance(value, bool):
        return value

    normalized = normalize_optional_string(value)
    if normalized is None:
        return None

    token = normalized.lower()
    if token in _TRUE_BOOLEAN_TOKENS:
        return True
    if token in _FALSE_BOOLEAN_TOKENS:
        return False
    return None


def parse_optional_int(value: object, field_name: str) -> int | None:
    """Parse an optional integer, rejecting booleans and non-numeric text.

    Raises:
        ValueError: If a non-blank value is not an integer token.
    """

    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"`{field_name}` must be an integer.")
    if isinstance(value, int):
        return value
    normalized = normalize_optional_string(value)
    if normalized is None:
        return None
    try:
        return int(normalized)
    except ValueError as exc:
        raise ValueError(f"`{field_name}` must be an integer.") from exc


def parse_image_size(value: object) -> tuple[int, int]:
    """Parse a `W*H` (or `WxH`) size token into integer dimensions.

    Unparsable edges fall back to 1024, mirroring how stored settings are read.
    """

    normalized = normalize_optional_string(value)
    if normalized is None:
        return _DEFAULT_IMAGE_EDGE, _DEFAULT_IMAGE_EDGE
    separator = "*" if "*" in normalized else "x"
    parts = [part.strip() for part in normalized.lower().split(separator)]
    edges: list[int] = []
    for part in parts[:2]:
        edges.append(int(part) if part.isdigit() and int(part) > 0 else _DEFAULT_IMAGE_EDGE)
    while len(edges) < 2:
        edges.append(_DEFAULT_IMAGE_EDGE)
    return edges[0], edges[1]
