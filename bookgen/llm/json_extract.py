"""Defensive JSON extraction from untrusted language-model text.

Models wrap JSON in markdown fences, add prose before or after it, or return
bare JSON. Extraction tries, in order: fenced ```json blocks, any other fenced
block, the whole text, and finally the first decodable JSON value embedded in
the prose.
"""

from __future__ import annotations

import json
import re

from ..errors import MalformedModelOutput

_JSON_FENCE_RE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_ANY_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*\s*([\s\S]*?)\s*```")
_MAX_PREVIEW_CHARS = 120


def _preview(text: str) -> str:
    compact = " ".join(text.split())
    if len(compact) <= _MAX_PREVIEW_CHARS:
        return compact
    return f"{compact[: _MAX_PREVIEW_CHARS - 1]}..."


def _candidates(text: str) -> list[str]:
    found: list[str] = []
    found.extend(match.group(1) for match in _JSON_FENCE_RE.finditer(text))
    found.extend(match.group(1) for match in _ANY_FENCE_RE.finditer(text))
    found.append(text.strip())
    return found


def _scan_embedded(text: str, expected: tuple[type, ...]) -> object | None:
    """Return the first embedded JSON value of an expected type, if any."""

    decoder = json.JSONDecoder()
    for index, character in enumerate(text):
        if character not in "{[":
            continue
        try:
            value, _ = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            continue
        if isinstance(value, expected):
            return value
    return None


def extract_json_payload(
    text: str,
    expected: type | tuple[type, ...] = (dict, list),
) -> object:
    """Extract a JSON value of the expected type from model output.

    Args:
        text: Raw model response.
        expected: Accepted Python type(s) for the decoded value.

    Returns:
        The decoded JSON value.

    Raises:
        MalformedModelOutput: If no candidate decodes to an accepted type.
    """

    expected_types = expected if isinstance(expected, tuple) else (expected,)
    if not isinstance(text, str) or not text.strip():
        raise MalformedModelOutput("Model response is empty.")

    for candidate in _candidates(text):
        if not candidate:
            continue
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, expected_types):
            return value

    embedded = _scan_embedded(text, expected_types)
    if embedded is not None:
        return embedded

    names = "/".join(item.__name__ for item in expected_types)
    raise MalformedModelOutput(
        f"Model response does not contain a JSON {names}: {_preview(text)}"
    )
