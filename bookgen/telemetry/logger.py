"""Structured run logging utilities.

Responsibilities:
- Emit concise, deterministic task-run logs built on `loguru`.
- Keep chunk identifiers and provider names in sorted `key=value` tokens so log
  lines stay grep-friendly and stable across runs.
"""

from __future__ import annotations

import sys
from typing import TextIO

from loguru import logger as _loguru_logger


def _sanitize_context_value(value: object) -> str:
    """Convert context values into stable, shell-safe tokens."""

    raw = str(value.value if hasattr(value, "value") else value).strip()
    if not raw:
        return "none"
    return "".join(
        character if character.isalnum() or character in {"-", "_", ".", ":", "/"} else "_"
        for character in raw
    )


def _format_context(context: dict[str, object]) -> str:
    """Serialize context key/value pairs in deterministic key order."""

    if not context:
        return ""
    tokens = [
        f"{key}={_sanitize_context_value(context[key])}"
        for key in sorted(context.keys())
        if context[key] is not None
    ]
    if not tokens:
        return ""
    return " " + " ".join(tokens)


class RunLogger:
    """Emit deterministic event logs for task runs and CLI-observable activity."""

    def __init__(self, sink: TextIO | None = None, level: str = "INFO") -> None:
        """Initialize logger sink and configure deterministic formatting."""

        self._sink = sink or sys.stderr
        _loguru_logger.remove()
        _loguru_logger.add(self._sink, format="{message}", level=level, colorize=False)

    def _emit(self, level: str, event: str, kind: object, **context: object) -> None:
        """Emit one structured runtime log line."""

        line = (
            f"[task] level={level} kind={_sanitize_context_value(kind)} "
            f"event={event}{_format_context(context)}"
        )
        _loguru_logger.log(level, line)

    def info(self, event: str, kind: object = "none", **context: object) -> None:
        self._emit("INFO", event, kind, **context)

    def warning(self, event: str, kind: object = "none", **context: object) -> None:
        self._emit("WARNING", event, kind, **context)

    def debug(self, event: str, kind: object = "none", **context: object) -> None:
        self._emit("DEBUG", event, kind, **context)

    def failure(self, event: str, kind: object, error: BaseException, **context: object) -> None:
        """Emit an error event carrying only the exception type, never its payload."""

        self._emit("ERROR", event, kind, error_type=type(error).__name__, **context)
