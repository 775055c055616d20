"""Chapter-to-chunk task splitting.

Responsibilities:
- Group consecutive chapter lines into token-bounded chunks without ever
  splitting a line.
- Skip chapters too short to be worth a generation request.
- Allocate a per-chapter unit budget across chunks proportionally to their
  token share, preserving the chapter total exactly.
"""

from __future__ import annotations

from collections.abc import Callable
import math
from uuid import uuid4

from ..models.datatypes import Book, Chapter, Chunk, Line
from ..telemetry.logger import RunLogger
from .tokens import TiktokenCounter, TokenCounter

MIN_CHAPTER_CHARS = 500


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def allocate_units(chunk_tokens: list[int], units_per_chapter: int) -> list[int]:
    """Distribute a chapter unit budget across chunks by token share.

    Every chunk except the last receives `round(U * t_i / T)` (half rounds up),
    capped so the running total never exceeds the budget; the last chunk
    receives the exact remainder. When the chapter has no tokens at all, the
    whole budget goes to the first chunk.

    Args:
        chunk_tokens: Token count of each chunk, in chapter order.
        units_per_chapter: Non-negative chapter budget `U`.

    Returns:
        Per-chunk unit allocation summing to exactly `units_per_chapter`.
    """

    if not chunk_tokens:
        return []
    budget = max(0, units_per_chapter)
    total_tokens = sum(chunk_tokens)
    if total_tokens <= 0:
        return [budget] + [0] * (len(chunk_tokens) - 1)

    allocation: list[int] = []
    distributed = 0
    for tokens in chunk_tokens[:-1]:
        share = _round_half_up(budget * tokens / total_tokens)
        share = min(share, budget - distributed)
        allocation.append(share)
        distributed += share
    allocation.append(budget - distributed)
    return allocation


class TaskSplitter:
    """Split a book into ordered, token-bounded chunks."""

    def __init__(
        self,
        token_counter: TokenCounter | None = None,
        *,
        min_chapter_chars: int = MIN_CHAPTER_CHARS,
        id_factory: Callable[[], str] | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        self.token_counter = token_counter if token_counter is not None else TiktokenCounter()
        self.min_chapter_chars = min_chapter_chars
        self._id_factory = id_factory if id_factory is not None else (lambda: uuid4().hex)
        self._run_logger = run_logger

    def split(
        self,
        book: Book,
        chunk_token_budget: int,
        units_per_chapter: int | None = None,
    ) -> list[Chunk]:
        """Split every eligible chapter of `book` into chunks.

        Args:
            book: Book tree to split.
            chunk_token_budget: Maximum tokens per chunk; a single line larger
                than the budget still forms its own chunk.
            units_per_chapter: Optional unit budget for units kinds. When
                omitted, every chunk is kept and `units_to_generate` is `None`.

        Returns:
            Chunks in source order.
        """

        if chunk_token_budget <= 0:
            raise ValueError("`chunk_token_budget` must be a positive integer.")

        chunks: list[Chunk] = []
        for chapter in book.chapters:
            if not chapter.lines:
                continue
            total_chars = chapter.total_chars()
            if total_chars < self.min_chapter_chars:
                if self._run_logger is not None:
                    self._run_logger.info(
                        "split_skip_chapter",
                        chapter=chapter.id,
                        chars=total_chars,
                    )
                continue
            line_groups = self._group_lines(chapter, chunk_token_budget)
            chunks.extend(self._chunks_for_chapter(chapter, line_groups, units_per_chapter))
        return chunks

    def _group_lines(self, chapter: Chapter, chunk_token_budget: int) -> list[list[Line]]:
        """Greedily accumulate consecutive lines under the token budget."""

        groups: list[list[Line]] = []
        current: list[Line] = []
        current_tokens = 0
        for line in chapter.lines:
            line_tokens = self.token_counter.count(line.text)
            if current and current_tokens + line_tokens > chunk_token_budget:
                groups.append(current)
                current = []
                current_tokens = 0
            current.append(line)
            current_tokens += line_tokens
        if current:
            groups.append(current)
        return groups

    def _chunks_for_chapter(
        self,
        chapter: Chapter,
        line_groups: list[list[Line]],
        units_per_chapter: int | None,
    ) -> list[Chunk]:
        if units_per_chapter is None:
            return [self._make_chunk(chapter, group, None) for group in line_groups]

        group_tokens = [
            self.token_counter.count("\n".join(line.text for line in group))
            for group in line_groups
        ]
        allocation = allocate_units(group_tokens, units_per_chapter)
        return [
            self._make_chunk(chapter, group, units)
            for group, units in zip(line_groups, allocation)
            if units > 0
        ]

    def _make_chunk(self, chapter: Chapter, group: list[Line], units: int | None) -> Chunk:
        return Chunk(
            id=self._id_factory(),
            chapter_id=chapter.id,
            start_line_id=group[0].id,
            end_line_id=group[-1].id,
            units_to_generate=units,
        )
