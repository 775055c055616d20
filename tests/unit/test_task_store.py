"""Unit tests for the JSON task store and record payload conversion."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import json
from pathlib import Path

import pytest

from bookgen.errors import PersistenceError
from bookgen.io.storage import JsonTaskStore
from bookgen.models.datatypes import (
    Book,
    Chapter,
    Chunk,
    ChunkStatus,
    Line,
    TaskEntry,
    TaskKind,
    TaskStatus,
)
from tests.fakes import make_book


def _entry(kind: TaskKind = TaskKind.ILLUSTRATION) -> TaskEntry:
    return TaskEntry(
        book_id="book-1",
        kind=kind,
        status=TaskStatus.PAUSED,
        error_message="1 chunk(s) failed.",
        created_at=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        updated_at=datetime(2024, 1, 2, 3, 5, 0, tzinfo=timezone.utc),
        chunks=[
            Chunk(id="a", chapter_id="c1", start_line_id=1, end_line_id=5, units_to_generate=2),
            Chunk(
                id="b",
                chapter_id="c1",
                start_line_id=6,
                end_line_id=10,
                status=ChunkStatus.FAILED,
                units_to_generate=1,
            ),
        ],
    )


def test_store_persists_book_and_entry_under_book_directory(tmp_path: Path) -> None:
    """Books and entries should land in `<root>/<book>/book.json` and `tasks/<kind>.json`."""

    store = JsonTaskStore(tmp_path)
    book = make_book()
    book.chapters[0].lines[0].illustration_paths.append("media/c1/x.png")
    book.chapters[0].lines[0].scene_description = "Ночной дождь"
    entry = _entry()

    async def _scenario() -> tuple[Book, TaskEntry]:
        await store.save_book(book)
        await store.save_chunks(entry)
        return await store.load_book("book-1"), await store.load_chunks(
            "book-1", TaskKind.ILLUSTRATION
        )

    loaded_book, loaded_entry = asyncio.run(_scenario())

    assert store.book_path("book-1") == tmp_path / "book-1" / "book.json"
    assert store.entry_path("book-1", TaskKind.ILLUSTRATION) == (
        tmp_path / "book-1" / "tasks" / "illustration.json"
    )
    assert loaded_book == book
    assert loaded_entry == entry
    raw = store.book_path("book-1").read_text(encoding="utf-8")
    assert "Ночной дождь" in raw
    assert not list((tmp_path / "book-1").glob(".*.tmp"))


def test_load_chunks_returns_empty_entry_when_missing(tmp_path: Path) -> None:
    """A missing entry is not an error: it reads as an empty, not-started entry."""

    store = JsonTaskStore(tmp_path)

    entry = asyncio.run(store.load_chunks("nobody", TaskKind.TRANSLATION))

    assert entry.book_id == "nobody"
    assert entry.kind is TaskKind.TRANSLATION
    assert entry.chunks == []
    assert entry.status is TaskStatus.NOT_STARTED
    assert asyncio.run(store.has_entry("nobody", TaskKind.TRANSLATION)) is False


def test_load_book_raises_persistence_error_for_missing_or_malformed_book(
    tmp_path: Path,
) -> None:
    """Missing and undecodable books should surface as `PersistenceError`."""

    store = JsonTaskStore(tmp_path)

    with pytest.raises(PersistenceError, match="was not found"):
        asyncio.run(store.load_book("missing"))

    broken = store.book_path("broken")
    broken.parent.mkdir(parents=True)
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError, match="Failed to read"):
        asyncio.run(store.load_book("broken"))

    shapeless = store.book_path("shapeless")
    shapeless.parent.mkdir(parents=True)
    shapeless.write_text(json.dumps({"title": "no id"}), encoding="utf-8")
    with pytest.raises(PersistenceError, match="is malformed"):
        asyncio.run(store.load_book("shapeless"))


def test_write_failure_is_reported_as_persistence_error(tmp_path: Path) -> None:
    """An unwritable destination should raise `PersistenceError`, not `OSError`."""

    blocker = tmp_path / "blocked"
    blocker.write_text("a file, not a directory", encoding="utf-8")
    store = JsonTaskStore(blocker)

    with pytest.raises(PersistenceError, match="Failed to write"):
        asyncio.run(store.save_book(make_book()))


def test_concurrent_saves_leave_a_complete_document(tmp_path: Path) -> None:
    """Concurrent writers are serialized so the final file is always valid JSON."""

    store = JsonTaskStore(tmp_path)
    entries = []
    for index in range(8):
        entry = _entry()
        entry.error_message = f"writer {index}"
        entries.append(entry)

    async def _scenario() -> None:
        await asyncio.gather(*(store.save_chunks(entry) for entry in entries))

    asyncio.run(_scenario())

    payload = json.loads(
        store.entry_path("book-1", TaskKind.ILLUSTRATION).read_text(encoding="utf-8")
    )
    assert payload["error_message"].startswith("writer ")
    assert len(payload["chunks"]) == 2


def test_queued_book_save_writes_state_from_when_it_gets_the_lock(tmp_path: Path) -> None:
    """A save waiting behind another write should persist later in-memory changes."""

    store = JsonTaskStore(tmp_path)
    book = make_book()

    async def _scenario() -> None:
        first = asyncio.create_task(store.save_book(book))
        second = asyncio.create_task(store.save_book(book))
        await asyncio.sleep(0)
        book.chapters[0].set_translation(1, "late translation")
        await asyncio.gather(first, second)

    asyncio.run(_scenario())

    persisted = asyncio.run(store.load_book("book-1"))
    assert persisted.chapters[0].lines[0].translated_text == "late translation"


def test_list_and_delete_entries_and_books(tmp_path: Path) -> None:
    """Listing should follow kind order and deletes should report what they removed."""

    store = JsonTaskStore(tmp_path)

    async def _scenario() -> dict[str, object]:
        await store.save_book(make_book("book-1"))
        await store.save_book(make_book("book-2"))
        await store.save_chunks(_entry(TaskKind.TRANSLATION))
        await store.save_chunks(_entry(TaskKind.ILLUSTRATION))
        kinds = [entry.kind for entry in await store.list_entries("book-1")]
        books = await store.list_books()
        removed = await store.delete_entry("book-1", TaskKind.TRANSLATION)
        removed_again = await store.delete_entry("book-1", TaskKind.TRANSLATION)
        await store.delete_book("book-2")
        await store.delete_book("book-2")
        return {
            "kinds": kinds,
            "books": books,
            "removed": removed,
            "removed_again": removed_again,
            "remaining_books": await store.list_books(),
        }

    outcome = asyncio.run(_scenario())

    assert outcome["kinds"] == [TaskKind.ILLUSTRATION, TaskKind.TRANSLATION]
    assert outcome["books"] == ["book-1", "book-2"]
    assert outcome["removed"] is True
    assert outcome["removed_again"] is False
    assert outcome["remaining_books"] == ["book-1"]
    assert asyncio.run(store.list_books()) == ["book-1"]
    assert asyncio.run(JsonTaskStore(tmp_path / "absent").list_books()) == []


def test_chunk_payload_omits_units_for_whole_chunk_kinds() -> None:
    """Whole-chunk chunks serialize without `units_to_generate`."""

    chunk = Chunk(id="t", chapter_id="c1", start_line_id=1, end_line_id=4)

    payload = chunk.to_payload()

    assert "units_to_generate" not in payload
    assert Chunk.from_payload(payload) == chunk


def test_line_payload_defaults_optional_fields() -> None:
    """Minimal line payloads should load with empty artifacts."""

    line = Line.from_payload({"id": "3", "text": "Hi."})

    assert line == Line(id=3, text="Hi.")
    assert line.illustration_paths == []
    assert line.translated_text is None


def test_entry_progress_and_touch() -> None:
    """Progress counts completed chunks; `touch` keeps `created_at` once set."""

    entry = _entry()
    entry.chunks[1].status = ChunkStatus.COMPLETED
    created = entry.created_at

    entry.touch()

    assert entry.progress == 0.5
    assert entry.created_at == created
    assert entry.updated_at is not None and entry.updated_at > created
    assert TaskEntry(book_id="b", kind=TaskKind.TRANSLATION).progress == 0.0


def test_chapter_attaches_artifacts_only_to_existing_lines() -> None:
    """Attaching to an unknown line id should report `False` and change nothing."""

    chapter = Chapter(id="c1", title="One", lines=[Line(id=1, text="a"), Line(id=2, text="b")])

    assert chapter.add_illustrations(2, ["x.png"], "scene") is True
    assert chapter.add_illustrations(9, ["y.png"]) is False
    assert chapter.set_translation(1, "A") is True
    assert chapter.set_translation(7, "?") is False

    assert chapter.lines[1].illustration_paths == ["x.png"]
    assert chapter.lines[1].scene_description == "scene"
    assert chapter.lines[0].translated_text == "A"
    assert [line.id for line in chapter.lines_between(2, 5)] == [2]
