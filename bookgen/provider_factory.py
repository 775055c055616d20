"""Provider factory helpers for language-model and media-generation backends.

Responsibilities:
- Resolve provider identifiers to concrete backend implementations.
- Keep orchestration independent from concrete provider class construction.

Notes:
- Only `openai` is implemented at the moment.
"""

from __future__ import annotations

from .config import ProviderSettings
from .llm.backends import (
    GenerationBackend,
    LanguageModelBackend,
    OpenAIChatBackend,
    OpenAIImageBackend,
)


class ProviderFactory:
    """Factory for provider-backed clients used by task runs."""

    @staticmethod
    def create_language_backend(settings: ProviderSettings) -> LanguageModelBackend:
        """Create a language-model backend for configured provider settings."""

        if settings.provider == "openai":
            return OpenAIChatBackend(
                model=settings.model,
                api_key=settings.api_key,
                base_url=settings.base_url,
                timeout_seconds=settings.timeout_seconds,
            )
        raise ValueError(f"Unsupported language-model provider `{settings.provider}`.")

    @staticmethod
    def create_media_backend(settings: ProviderSettings) -> GenerationBackend:
        """Create a media-generation backend for configured provider settings."""

        if settings.provider == "openai":
            return OpenAIImageBackend(
                model=settings.model,
                api_key=settings.api_key,
                base_url=settings.base_url,
                timeout_seconds=settings.timeout_seconds,
            )
        raise ValueError(f"Unsupported media provider `{settings.provider}`.")
