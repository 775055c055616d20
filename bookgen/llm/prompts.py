"""Prompt template library for language-model and media-generation calls.

Responsibilities:
- Centralize prompt construction for scene discovery and translation.
- Keep prompts deterministic for a given chunk so a retried chunk re-derives
  the same request.
- Assemble final media prompts from a scene prompt plus configured tags.
"""

from __future__ import annotations

import json

from ..models.datatypes import Line

Message = dict[str, str]


class PromptLibrary:
    """Build prompt strings and chat messages for supported generation kinds."""

    def scene_system_prompt(self) -> str:
        """Return the system prompt for illustration scene discovery."""

        return (
            "You are a professional novel illustration assistant. You pick the most "
            "visual scenes from novel text and write a detailed image-generation prompt "
            "for each of them."
        )

    def scene_messages(self, lines: list[Line], scene_count: int) -> list[Message]:
        """Return chat messages asking for `scene_count` scenes in the given lines."""

        numbered_text = "\n".join(f"{line.id}: {line.text}" for line in lines)
        user_prompt = (
            "Read the novel text carefully. Capture the key characters, actions, setting "
            f"and mood, and pick the {scene_count} most visual, emotionally striking "
            "moments.\n\n"
            "For each scene:\n"
            "1. Write a short description of the scene (`scene_description`).\n"
            "2. Write an English image-generation prompt (`prompt`) covering subject, "
            "clothing, pose and emotion, composition, environment, and lighting. Use "
            "concrete visual tag language. Do not include art style, quality tags, or "
            "artist names.\n"
            "3. Give the line number after which the illustration belongs "
            "(`insertion_line_number`), using the numbers in front of each line.\n"
            "4. Return only a JSON array in the format below, with no commentary.\n\n"
            "### Novel text:\n"
            "---\n"
            f"{numbered_text}\n"
            "---\n\n"
            "### JSON output format:\n"
            "```json\n"
            "[\n"
            "  {\n"
            '    "scene_description": "Short description of the scene.",\n'
            '    "prompt": "1man, rugged face, a scar on his left cheek...",\n'
            '    "insertion_line_number": 123\n'
            "  }\n"
            "]\n"
            "```"
        )
        return [{"role": "user", "content": user_prompt}]

    def translation_system_prompt(self, source_language: str, target_language: str) -> str:
        """Return the system prompt for strict JSON-map translation behavior."""

        return (
            "You are a precise literary translator. Translate the provided text from "
            f"{source_language} into {target_language}, preserving meaning, tone, and "
            "formatting. Translate faithfully without omitting or softening content.\n\n"
            "### Output format:\n"
            "```json\n"
            '{\n  "0": "translation 1",\n  "1": "translation 2"\n}\n'
            "```"
        )

    def translation_messages(
        self,
        lines: list[Line],
        source_language: str,
        target_language: str,
    ) -> list[Message]:
        """Return chat messages carrying the chunk lines as an index-keyed JSON object."""

        lines_map = {str(index): line.text for index, line in enumerate(lines)}
        user_prompt = (
            f"Translate the following text from {source_language} into {target_language}.\n\n"
            "### Input (JSON object):\n"
            f"{json.dumps(lines_map, ensure_ascii=False)}"
        )
        return [{"role": "user", "content": user_prompt}]

    def media_prompt(
        self,
        scene_prompt: str,
        quality_prompt: str = "",
        style_prompt: str = "",
    ) -> str:
        """Join a scene prompt with configured quality and style tags."""

        parts = [part.strip() for part in (scene_prompt, quality_prompt, style_prompt)]
        return ", ".join(part for part in parts if part)
