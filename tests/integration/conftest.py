"""Integration-test fixtures for deterministic provider behavior."""

from __future__ import annotations

import pytest

from bookgen.llm.openai_client import OpenAIChatClient, OpenAIImageClient
from tests.fakes import auto_reply


@pytest.fixture(autouse=True)
def _mock_openai_calls(monkeypatch: pytest.MonkeyPatch) -> None:
    """Mock OpenAI chat and image calls in integration tests to avoid network/key requirements."""

    def _mock_chat_completion(self, **kwargs: object) -> str:
        """Answer scene and translation prompts with well-formed JSON."""

        _ = self
        return auto_reply(kwargs["system_prompt"], kwargs["messages"])

    def _mock_generate_images(self, **kwargs: object) -> list[bytes]:
        """Return one placeholder PNG payload per requested image."""

        _ = self
        return [b"\x89PNG\r\n\x1a\nintegration"] * int(kwargs["count"])

    monkeypatch.setattr(OpenAIChatClient, "chat_completion_text", _mock_chat_completion)
    monkeypatch.setattr(OpenAIImageClient, "generate_images", _mock_generate_images)
