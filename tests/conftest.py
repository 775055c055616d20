"""Shared pytest fixtures for the full bookgen test suite."""

from __future__ import annotations

import pytest

_BOOKGEN_ENV_VARS = (
    "BOOKGEN_STORE_DIR",
    "OPENAI_API_KEY",
    "BOOKGEN_LLM_MODEL",
    "BOOKGEN_LLM_CONCURRENCY",
    "BOOKGEN_LLM_RPM",
    "BOOKGEN_MEDIA_MODEL",
    "BOOKGEN_MEDIA_CONCURRENCY",
    "BOOKGEN_MEDIA_RPM",
    "BOOKGEN_MEDIA_QPS",
    "BOOKGEN_ILLUSTRATION_TOKENS",
    "BOOKGEN_SCENES_PER_CHAPTER",
    "BOOKGEN_TRANSLATION_TOKENS",
)


@pytest.fixture(autouse=True)
def _isolated_bookgen_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer-shell `BOOKGEN_*` variables out of config resolution."""

    for name in _BOOKGEN_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
