"""Backend contracts consumed by the orchestrator, plus OpenAI implementations.

Responsibilities:
- Define the language-model and media-generation capability protocols.
- Adapt the blocking OpenAI HTTP clients to those async contracts.
- Write generated media into the requested output directory.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from .openai_client import OpenAIChatClient, OpenAIImageClient


class LanguageModelBackend(Protocol):
    """Protocol for language-model completion providers."""

    async def complete(self, system_prompt: str, messages: list[dict[str, str]]) -> str:
        """Return raw completion text for a system prompt and chat messages."""


class GenerationBackend(Protocol):
    """Protocol for media-generation providers."""

    async def generate(
        self,
        prompt: str,
        negative_prompt: str | None,
        output_dir: Path,
        count: int,
        dimensions: tuple[int, int] | None = None,
        reference_media: str | None = None,
    ) -> list[str]:
        """Generate `count` outputs into `output_dir` and return their paths."""


class OpenAIChatBackend:
    """OpenAI chat-completions backend for the language-model pool."""

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        api_key: str | None = None,
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 120.0,
    ) -> None:
        self.model = model
        self.client = OpenAIChatClient(
            api_key=api_key,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
        )

    async def complete(self, system_prompt: str, messages: list[dict[str, str]]) -> str:
        return await asyncio.to_thread(
            self.client.chat_completion_text,
            model=self.model,
            system_prompt=system_prompt,
            messages=messages,
        )


class OpenAIImageBackend:
    """OpenAI image backend for the media pool.

    OpenAI has no negative-prompt field, so a non-empty negative prompt is
    appended to the prompt as an `Avoid:` clause. A reference image that exists
    on disk routes the request through the image edit endpoint.
    """

    def __init__(
        self,
        model: str = "gpt-image-1",
        api_key: str | None = None,
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 120.0,
    ) -> None:
        self.model = model
        self.client = OpenAIImageClient(
            api_key=api_key,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
        )

    async def generate(
        self,
        prompt: str,
        negative_prompt: str | None,
        output_dir: Path,
        count: int,
        dimensions: tuple[int, int] | None = None,
        reference_media: str | None = None,
    ) -> list[str]:
        full_prompt = prompt
        if negative_prompt and negative_prompt.strip():
            full_prompt = f"{prompt}\n\nAvoid: {negative_prompt.strip()}"
        width, height = dimensions if dimensions is not None else (1024, 1024)
        size = f"{width}x{height}"

        reference_path = Path(reference_media) if reference_media else None
        if reference_path is not None and reference_path.is_file():
            images = await asyncio.to_thread(
                self.client.edit_images,
                model=self.model,
                prompt=full_prompt,
                count=count,
                size=size,
                reference_image=reference_path,
            )
        else:
            images = await asyncio.to_thread(
                self.client.generate_images,
                model=self.model,
                prompt=full_prompt,
                count=count,
                size=size,
            )
        return await asyncio.to_thread(self._write_images, output_dir, images)

    @staticmethod
    def _write_images(output_dir: Path, images: list[bytes]) -> list[str]:
        output_dir.mkdir(parents=True, exist_ok=True)
        paths: list[str] = []
        for image in images:
            path = output_dir / f"{uuid4().hex}.png"
            path.write_bytes(image)
            paths.append(str(path))
        return paths
