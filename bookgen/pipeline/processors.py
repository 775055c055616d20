"""Kind-specific chunk processing.

Responsibilities:
- Turn one chunk into language-model requests and parse their untrusted output.
- Retry the request-and-parse step exactly once on malformed output.
- Fan illustration scenes out into the media pool, each call gated by the
  media rate limiter, and attach results to the book tree by line id.
- Write translations back onto the chunk's lines.

Processors raise on failure; the orchestrator owns chunk status transitions.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, TypeVar

from ..config import BookgenConfig, KindSettings
from ..errors import (
    BookgenError,
    CancellationRequested,
    MalformedModelOutput,
    TransientProviderError,
)
from ..llm.backends import GenerationBackend, LanguageModelBackend
from ..llm.json_extract import extract_json_payload
from ..llm.prompts import Message, PromptLibrary
from ..llm.rate_limiter import RateLimiter
from ..models.datatypes import Book, Chapter, Chunk, Line, TaskKind
from ..telemetry.logger import RunLogger
from .cancellation import CancellationToken
from .pools import WorkerPool

ParsedT = TypeVar("ParsedT")


@dataclass(slots=True)
class ChunkContext:
    """Everything a processor needs to work on one chunk inside a run."""

    book: Book
    chunk: Chunk
    kind: TaskKind
    token: CancellationToken
    media_pool: WorkerPool
    language_limiter: RateLimiter
    media_limiter: RateLimiter
    wait_if_paused: Callable[[], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class Scene:
    """One illustration scene parsed from a language-model response."""

    line_id: int
    prompt: str
    description: str | None = None


class ChunkProcessor(Protocol):
    """Protocol for kind-specific chunk processing."""

    async def process(self, context: ChunkContext) -> None:
        """Generate and attach output for one chunk, raising on failure."""


class _LanguageModelStep:
    """Shared request-and-parse step with one retry on malformed output."""

    def __init__(
        self,
        language_backend: LanguageModelBackend,
        prompts: PromptLibrary | None,
        run_logger: RunLogger | None,
    ) -> None:
        self.language_backend = language_backend
        self.prompts = prompts if prompts is not None else PromptLibrary()
        self.run_logger = run_logger if run_logger is not None else RunLogger()

    async def _complete_and_parse(
        self,
        context: ChunkContext,
        system_prompt: str,
        messages: list[Message],
        parse: Callable[[str], ParsedT],
    ) -> ParsedT:
        attempts = 2
        for attempt in range(1, attempts + 1):
            context.token.raise_if_canceled()
            await context.language_limiter.acquire(context.token)
            response_text = await self.language_backend.complete(system_prompt, messages)
            context.token.raise_if_canceled()
            try:
                return parse(response_text)
            except MalformedModelOutput as exc:
                if attempt == attempts:
                    raise
                self.run_logger.warning(
                    "llm_retry",
                    kind=context.kind,
                    chunk=context.chunk.id,
                    attempt=attempt + 1,
                    error_type=type(exc).__name__,
                )
        raise AssertionError("unreachable")

    @staticmethod
    def _chapter_for(context: ChunkContext) -> Chapter:
        chapter = context.book.chapter_by_id(context.chunk.chapter_id)
        if chapter is None:
            raise BookgenError(
                f"Chunk `{context.chunk.id}` references unknown chapter `{context.chunk.chapter_id}`."
            )
        return chapter


class IllustrationProcessor(_LanguageModelStep):
    """Discover scenes with the language model and render them with the media backend."""

    def __init__(
        self,
        language_backend: LanguageModelBackend,
        media_backend: GenerationBackend,
        config: BookgenConfig,
        output_root: Path,
        *,
        prompts: PromptLibrary | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        super().__init__(language_backend, prompts, run_logger)
        self.media_backend = media_backend
        self.config = config
        self.settings: KindSettings = config.illustration
        self.output_root = output_root

    async def process(self, context: ChunkContext) -> None:
        chapter = self._chapter_for(context)
        lines = context.book.lines_in_range(context.chunk)
        if not lines:
            raise BookgenError(f"Chunk `{context.chunk.id}` selects no lines.")
        scene_count = context.chunk.units_to_generate
        if scene_count is None:
            scene_count = 1
        if scene_count <= 0:
            return

        scenes = await self._complete_and_parse(
            context,
            self.prompts.scene_system_prompt(),
            self.prompts.scene_messages(lines, scene_count),
            lambda text: self.parse_scenes(text, context.chunk, scene_count),
        )
        reference = self.reference_media_for(lines)
        results = await asyncio.gather(
            *(self._render_scene(context, chapter, scene, reference) for scene in scenes),
            return_exceptions=True,
        )

        attached = 0
        canceled: CancellationRequested | None = None
        last_error: BaseException | None = None
        for scene, result in zip(scenes, results):
            if isinstance(result, CancellationRequested):
                canceled = result
            elif isinstance(result, BaseException):
                last_error = result
                self.run_logger.failure(
                    "media_failed",
                    context.kind,
                    result,
                    chunk=context.chunk.id,
                    line=scene.line_id,
                )
            else:
                attached += result

        if attached > 0:
            return
        if canceled is not None:
            raise canceled
        if last_error is not None:
            raise last_error
        raise TransientProviderError(
            f"No illustration could be attached for chunk `{context.chunk.id}`."
        )

    def parse_scenes(self, text: str, chunk: Chunk, scene_count: int) -> list[Scene]:
        """Parse scene items, dropping unusable ones and clamping lines into the chunk."""

        payload = extract_json_payload(text, expected=(list, dict))
        if isinstance(payload, dict):
            nested = payload.get("scenes")
            items = nested if isinstance(nested, list) else [payload]
        else:
            items = payload

        scenes: list[Scene] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            prompt = item.get("prompt")
            raw_line = item.get("insertion_line_number")
            if not isinstance(prompt, str) or not prompt.strip():
                continue
            if isinstance(raw_line, bool):
                continue
            try:
                line_id = int(raw_line)
            except (TypeError, ValueError):
                continue
            line_id = min(max(line_id, chunk.start_line_id), chunk.end_line_id)
            description = item.get("scene_description")
            scenes.append(
                Scene(
                    line_id=line_id,
                    prompt=prompt.strip(),
                    description=description.strip() if isinstance(description, str) else None,
                )
            )
        if not scenes:
            raise MalformedModelOutput("Model response contains no usable scene items.")
        return scenes[:scene_count]

    def reference_media_for(self, lines: list[Line]) -> str | None:
        """Return the reference media of the first configured character named in the text."""

        text = "\n".join(line.text for line in lines)
        for name, reference in self.config.character_references.items():
            if name in text:
                return reference
        return None

    async def _render_scene(
        self,
        context: ChunkContext,
        chapter: Chapter,
        scene: Scene,
        reference: str | None,
    ) -> int:
        async with context.media_pool.slot():
            await context.wait_if_paused()
            context.token.raise_if_canceled()
            await context.media_limiter.acquire(context.token)
            paths = await self.media_backend.generate(
                prompt=self.prompts.media_prompt(
                    scene.prompt,
                    self.config.quality_prompt,
                    self.config.style_prompt,
                ),
                negative_prompt=self.config.negative_prompt or None,
                output_dir=self.output_root / context.book.id / "media" / chapter.id,
                count=self.settings.images_per_scene,
                dimensions=self.settings.dimensions,
                reference_media=reference,
            )
        context.token.raise_if_canceled()
        if not paths:
            raise TransientProviderError("Media backend returned no outputs.")
        if not chapter.add_illustrations(scene.line_id, list(paths), scene.description):
            return 0
        return len(paths)


class TranslationProcessor(_LanguageModelStep):
    """Translate a chunk's lines with one index-keyed JSON request."""

    def __init__(
        self,
        language_backend: LanguageModelBackend,
        config: BookgenConfig,
        *,
        prompts: PromptLibrary | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        super().__init__(language_backend, prompts, run_logger)
        self.settings: KindSettings = config.translation

    async def process(self, context: ChunkContext) -> None:
        chapter = self._chapter_for(context)
        lines = context.book.lines_in_range(context.chunk)
        if not lines:
            return

        source_language = self.settings.source_language
        target_language = self.settings.target_language
        translations = await self._complete_and_parse(
            context,
            self.prompts.translation_system_prompt(source_language, target_language),
            self.prompts.translation_messages(lines, source_language, target_language),
            lambda text: self.parse_translations(text, lines),
        )
        for line_id, translated_text in translations.items():
            chapter.set_translation(line_id, translated_text)

    @staticmethod
    def parse_translations(text: str, lines: list[Line]) -> dict[int, str]:
        """Map index keys of the model's JSON object back onto line ids."""

        payload = extract_json_payload(text, expected=dict)
        translations: dict[int, str] = {}
        for index, line in enumerate(lines):
            value = payload.get(str(index))
            if isinstance(value, str):
                translations[line.id] = value
        if not translations:
            raise MalformedModelOutput("Model response contains no known line indices.")
        return translations
