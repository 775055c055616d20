"""Language-model and media-generation abstractions.

This package defines backend protocols, OpenAI integrations, prompt templates,
defensive JSON extraction, and per-provider rate limiting.
"""

from .backends import (
    GenerationBackend,
    LanguageModelBackend,
    OpenAIChatBackend,
    OpenAIImageBackend,
)
from .json_extract import extract_json_payload
from .openai_client import OpenAIChatClient, OpenAIImageClient, OpenAIProviderError
from .prompts import PromptLibrary
from .rate_limiter import RateLimiter, RateLimiterRegistry, interval_from_rate

__all__ = [
    "GenerationBackend",
    "LanguageModelBackend",
    "OpenAIChatBackend",
    "OpenAIImageBackend",
    "OpenAIChatClient",
    "OpenAIImageClient",
    "OpenAIProviderError",
    "PromptLibrary",
    "RateLimiter",
    "RateLimiterRegistry",
    "extract_json_payload",
    "interval_from_rate",
]
