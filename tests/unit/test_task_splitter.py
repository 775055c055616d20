"""Unit tests for chunk splitting and per-chapter unit allocation."""

from __future__ import annotations

import itertools

import pytest

from bookgen.models.datatypes import Chapter, ChunkStatus, Line
from bookgen.text.splitter import MIN_CHAPTER_CHARS, TaskSplitter, allocate_units
from bookgen.text.tokens import WhitespaceTokenCounter
from tests.fakes import make_book, make_chapter, make_line_text, quiet_logger


def _splitter() -> TaskSplitter:
    counter = itertools.count(1)
    return TaskSplitter(WhitespaceTokenCounter(), id_factory=lambda: f"chunk-{next(counter)}")


def test_allocate_units_follows_rounded_token_share_with_exact_remainder() -> None:
    """Chunks of 5000/5000/2000 tokens with budget 3 should receive one unit each."""

    assert allocate_units([5000, 5000, 2000], 3) == [1, 1, 1]
    assert allocate_units([5000, 5000], 3) == [2, 1]


def test_allocate_units_always_sums_to_budget() -> None:
    """Allocation should preserve the chapter budget for uneven and tiny chunks."""

    cases = [
        ([1, 1, 1, 1], 2),
        ([100, 10, 10], 1),
        ([7, 3, 9, 1, 12], 5),
        ([1], 4),
        ([50, 50, 50], 0),
    ]
    for tokens, budget in cases:
        allocation = allocate_units(tokens, budget)
        assert sum(allocation) == budget
        assert all(units >= 0 for units in allocation)
        assert len(allocation) == len(tokens)


def test_allocate_units_caps_rounding_overshoot() -> None:
    """Half-up rounding must never push the running total past the budget."""

    assert allocate_units([1, 1, 1, 1], 2) == [1, 1, 0, 0]


def test_allocate_units_gives_whole_budget_to_first_chunk_when_no_tokens() -> None:
    """A chapter with zero tokens should assign the full budget to the first chunk."""

    assert allocate_units([0, 0, 0], 3) == [3, 0, 0]
    assert allocate_units([], 3) == []


def test_split_scenario_three_chunks_keeps_every_allocated_chunk() -> None:
    """A 12,000-token chapter with budget 5,000 should yield 5000/5000/2000 token chunks."""

    chapter = make_chapter("c1", line_count=12, words=1000)
    book = make_book(chapters=[chapter])

    chunks = _splitter().split(book, chunk_token_budget=5000, units_per_chapter=3)

    assert [(chunk.start_line_id, chunk.end_line_id) for chunk in chunks] == [
        (1, 5),
        (6, 10),
        (11, 12),
    ]
    assert [chunk.units_to_generate for chunk in chunks] == [1, 1, 1]
    assert sum(chunk.units_to_generate or 0 for chunk in chunks) == 3


def test_split_drops_chunks_allocated_zero_units() -> None:
    """Chunks whose rounded share is zero should be omitted entirely."""

    lines = [Line(id=1, text=make_line_text(1, 100))]
    lines.extend(Line(id=index, text=make_line_text(index, 10)) for index in (2, 3))
    book = make_book(chapters=[Chapter(id="c1", title="One", lines=lines)])

    chunks = _splitter().split(book, chunk_token_budget=100, units_per_chapter=1)

    assert len(chunks) == 1
    assert chunks[0].start_line_id == 1
    assert chunks[0].units_to_generate == 1


def test_split_skips_chapters_below_character_threshold() -> None:
    """A chapter with 400 total characters should produce zero chunks."""

    short = Chapter(id="short", title="Short", lines=[Line(id=1, text="a" * 400)])
    logger, sink = quiet_logger()
    splitter = TaskSplitter(WhitespaceTokenCounter(), run_logger=logger)

    assert MIN_CHAPTER_CHARS == 500
    assert splitter.split(make_book(chapters=[short]), chunk_token_budget=100) == []
    assert "event=split_skip_chapter" in sink.getvalue()
    assert "chapter=short" in sink.getvalue()


def test_split_whole_chunk_kind_covers_every_line_without_overlap() -> None:
    """Chunk ranges should be contiguous, non-overlapping, and cover the chapter."""

    chapters = [make_chapter("c1", 23, words=7), make_chapter("c2", 9, words=13, first_id=100)]
    book = make_book(chapters=chapters)

    chunks = _splitter().split(book, chunk_token_budget=30)

    for chapter in chapters:
        chapter_chunks = [chunk for chunk in chunks if chunk.chapter_id == chapter.id]
        covered: list[int] = []
        for chunk in chapter_chunks:
            selected = chapter.lines_between(chunk.start_line_id, chunk.end_line_id)
            assert selected
            covered.extend(line.id for line in selected)
            assert chunk.units_to_generate is None
            assert chunk.status is ChunkStatus.PENDING
        assert covered == [line.id for line in chapter.lines]
        starts = [chunk.start_line_id for chunk in chapter_chunks]
        assert starts == sorted(starts)


def test_split_never_breaks_a_line_larger_than_budget() -> None:
    """An oversized line should form its own chunk instead of being split."""

    lines = [
        Line(id=1, text=make_line_text(1, 5)),
        Line(id=2, text=make_line_text(2, 80)),
        Line(id=3, text=make_line_text(3, 5)),
    ]
    book = make_book(chapters=[Chapter(id="c1", title="One", lines=lines)])

    chunks = _splitter().split(book, chunk_token_budget=20)

    assert [(chunk.start_line_id, chunk.end_line_id) for chunk in chunks] == [
        (1, 1),
        (2, 2),
        (3, 3),
    ]


def test_split_rejects_non_positive_budget() -> None:
    """A zero token budget is a configuration error."""

    with pytest.raises(ValueError, match="chunk_token_budget"):
        _splitter().split(make_book(), chunk_token_budget=0)
