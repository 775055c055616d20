"""Task persistence contract and JSON filesystem store.

Responsibilities:
- Define the persistence collaborator the orchestrator and task manager use.
- Store each book tree and each per-kind chunk list as JSON documents.
- Serialize writes to one in-flight write per store and replace files
  atomically so a crash never leaves a partial document behind.
- Snapshot documents under the write lock, so a book shared by several
  active runs is always written with its latest in-memory state.

Layout:
- `<root>/<book_id>/book.json`
- `<root>/<book_id>/tasks/<kind>.json`
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import json
import os
from pathlib import Path
import shutil
from typing import Any, Protocol

from ..errors import PersistenceError
from ..models.datatypes import Book, TaskEntry, TaskKind


class TaskPersistence(Protocol):
    """Protocol for book and chunk-list persistence."""

    async def load_chunks(self, book_id: str, kind: TaskKind) -> TaskEntry:
        """Return the latest persisted entry, or an empty one when none exists."""

    async def save_book(self, book: Book) -> None:
        """Persist the book tree, including attached artifacts."""

    async def save_chunks(self, entry: TaskEntry) -> None:
        """Persist a task entry and its chunk list."""


class JsonTaskStore:
    """Filesystem-backed JSON store for books and task entries."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None

    def book_path(self, book_id: str) -> Path:
        return self.root / book_id / "book.json"

    def entry_path(self, book_id: str, kind: TaskKind) -> Path:
        return self.root / book_id / "tasks" / f"{kind.value}.json"

    def _get_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def load_book(self, book_id: str) -> Book:
        """Load a stored book tree.

        Raises:
            PersistenceError: If the book does not exist or cannot be decoded.
        """

        path = self.book_path(book_id)
        payload = await asyncio.to_thread(self._read_json, path)
        if payload is None:
            raise PersistenceError(f"Book `{book_id}` was not found in `{self.root}`.")
        try:
            return Book.from_payload(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Stored book `{path}` is malformed: {exc}") from exc

    async def has_book(self, book_id: str) -> bool:
        return await asyncio.to_thread(self.book_path(book_id).is_file)

    async def load_chunks(self, book_id: str, kind: TaskKind) -> TaskEntry:
        path = self.entry_path(book_id, kind)
        payload = await asyncio.to_thread(self._read_json, path)
        if payload is None:
            return TaskEntry(book_id=book_id, kind=kind)
        try:
            return TaskEntry.from_payload(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Stored task entry `{path}` is malformed: {exc}") from exc

    async def has_entry(self, book_id: str, kind: TaskKind) -> bool:
        return await asyncio.to_thread(self.entry_path(book_id, kind).is_file)

    async def list_entries(self, book_id: str) -> list[TaskEntry]:
        """Return stored entries for every kind that has one, in kind order."""

        entries: list[TaskEntry] = []
        for kind in TaskKind:
            if await self.has_entry(book_id, kind):
                entries.append(await self.load_chunks(book_id, kind))
        return entries

    async def list_books(self) -> list[str]:
        def _scan() -> list[str]:
            if not self.root.is_dir():
                return []
            return sorted(
                child.name for child in self.root.iterdir() if (child / "book.json").is_file()
            )

        return await asyncio.to_thread(_scan)

    async def save_book(self, book: Book) -> None:
        await self._write(self.book_path(book.id), book.to_payload)

    async def save_chunks(self, entry: TaskEntry) -> None:
        await self._write(self.entry_path(entry.book_id, entry.kind), entry.to_payload)

    async def delete_entry(self, book_id: str, kind: TaskKind) -> bool:
        """Delete one task entry; returns whether a document was removed."""

        path = self.entry_path(book_id, kind)
        async with self._get_lock():
            try:
                await asyncio.to_thread(path.unlink)
            except FileNotFoundError:
                return False
            except OSError as exc:
                raise PersistenceError(f"Failed to delete `{path}`: {exc}") from exc
        return True

    async def delete_book(self, book_id: str) -> None:
        """Delete a book with all of its task entries and generated media."""

        book_dir = self.root / book_id
        async with self._get_lock():
            try:
                await asyncio.to_thread(shutil.rmtree, book_dir)
            except FileNotFoundError:
                return
            except OSError as exc:
                raise PersistenceError(f"Failed to delete `{book_dir}`: {exc}") from exc

    async def _write(self, path: Path, build_payload: Callable[[], dict[str, object]]) -> None:
        async with self._get_lock():
            try:
                payload = build_payload()
                await asyncio.to_thread(self._write_json_atomic, path, payload)
            except (OSError, TypeError, ValueError) as exc:
                raise PersistenceError(f"Failed to write `{path}`: {exc}") from exc

    @staticmethod
    def _write_json_atomic(path: Path, payload: dict[str, object]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True)
        temp_path = path.with_name(f".{path.name}.tmp")
        temp_path.write_text(content, encoding="utf-8")
        os.replace(temp_path, path)

    @staticmethod
    def _read_json(path: Path) -> Any:
        if not path.is_file():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Failed to read `{path}`: {exc}") from exc
