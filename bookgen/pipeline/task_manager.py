"""Task lifecycle management on the caller side of a run.

Responsibilities:
- Import books and create per-kind chunk lists with the task splitter.
- Own entry-level status, the cancellation token, and the pause flag of each
  active run.
- Share one in-memory book between active runs of different kinds, so every
  save writes the artifacts of all of them.
- Recover entries left `running` by a previous process.

Key types:
- `TaskManager`: lifecycle facade used by the CLI.
"""

from __future__ import annotations

import asyncio

from ..config import BookgenConfig
from ..errors import BookgenError, CancellationRequested, PersistenceError
from ..io.storage import JsonTaskStore
from ..models.datatypes import Book, ChunkStatus, TaskEntry, TaskKind, TaskStatus
from ..telemetry.logger import RunLogger
from ..text.splitter import TaskSplitter
from ..text.tokens import token_counter_for
from .cancellation import CancellationToken
from .orchestrator import ProgressCallback, TaskOrchestrator
from .resume import count_by_status, derive_entry_status

RunKey = tuple[str, TaskKind]


class TaskManager:
    """Create, run, pause, cancel, and recover per-kind task entries."""

    def __init__(
        self,
        store: JsonTaskStore,
        config: BookgenConfig,
        orchestrator: TaskOrchestrator | None = None,
        *,
        splitter: TaskSplitter | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.orchestrator = orchestrator
        self.run_logger = run_logger if run_logger is not None else RunLogger()
        self.splitter = (
            splitter
            if splitter is not None
            else TaskSplitter(token_counter_for(config.tokenizer), run_logger=self.run_logger)
        )
        self._tokens: dict[RunKey, CancellationToken] = {}
        self._paused: set[RunKey] = set()
        self._shared_books: dict[str, asyncio.Future[Book]] = {}
        self._book_users: dict[str, int] = {}

    async def import_book(self, book: Book, *, overwrite: bool = False) -> None:
        """Store a book tree; refuse to replace an existing one unless `overwrite`."""

        self._refuse_if_active(book.id)
        if not overwrite and await self.store.has_book(book.id):
            raise BookgenError(f"Book `{book.id}` already exists; pass overwrite to replace it.")
        await self.store.save_book(book)

    async def delete_book(self, book_id: str) -> bool:
        """Delete a book with its task entries and media; returns whether it existed."""

        self._refuse_if_active(book_id)
        if not await self.store.has_book(book_id):
            return False
        await self.store.delete_book(book_id)
        self.run_logger.info("book_deleted", book=book_id)
        return True

    async def split(self, book_id: str, kind: TaskKind, *, force: bool = False) -> TaskEntry:
        """Create the chunk list for one kind; an existing list is replaced only when forced."""

        if not force and await self.store.has_entry(book_id, kind):
            raise BookgenError(
                f"Task `{kind.value}` for `{book_id}` already exists; re-split with force."
            )
        book = await self.store.load_book(book_id)
        settings = self.config.kind_settings(kind)
        units_per_chapter = settings.units_per_chapter if kind.produces_units else None
        chunks = self.splitter.split(book, settings.chunk_tokens, units_per_chapter)
        entry = TaskEntry(book_id=book_id, kind=kind, chunks=chunks)
        entry.touch()
        await self.store.save_chunks(entry)
        self.run_logger.info("split_complete", kind=kind, book=book_id, chunks=len(chunks))
        return entry

    async def run(
        self,
        book_id: str,
        kind: TaskKind,
        on_progress: ProgressCallback | None = None,
    ) -> TaskEntry:
        """Run one entry and record its final status.

        A retry is another `run`: only pending and failed chunks execute.

        Raises:
            BookgenError: If no chunk list exists or a run is already active.
            CancellationRequested: If the run was canceled.
            PersistenceError: If results could not be saved.
        """

        if self.orchestrator is None:
            raise BookgenError("TaskManager has no orchestrator configured.")
        key = (book_id, kind)
        if key in self._tokens:
            raise BookgenError(f"Task `{kind.value}` for `{book_id}` is already running.")
        if not await self.store.has_entry(book_id, kind):
            raise BookgenError(f"Task `{kind.value}` for `{book_id}` does not exist; split first.")

        token = CancellationToken()
        self._tokens[key] = token
        holds_book = False
        try:
            entry = await self.store.load_chunks(book_id, kind)
            entry.status = TaskStatus.RUNNING
            entry.error_message = None
            entry.touch()
            await self.store.save_chunks(entry)

            holds_book = True
            book = await self._acquire_book(book_id)
            try:
                result = await self.orchestrator.run(
                    book,
                    kind,
                    token,
                    on_progress=on_progress,
                    is_paused=lambda: key in self._paused,
                )
            except CancellationRequested:
                await self._record_status(book_id, kind, TaskStatus.CANCELED, None)
                raise
            except Exception as exc:
                try:
                    await self._record_status(book_id, kind, TaskStatus.FAILED, str(exc))
                except PersistenceError as record_exc:
                    self.run_logger.failure("record_status_failed", kind, record_exc, book=book_id)
                raise

            result.status = derive_entry_status(result)
            failed = count_by_status(result.chunks)[ChunkStatus.FAILED]
            result.error_message = f"{failed} chunk(s) failed." if failed else None
            result.touch()
            await self.store.save_chunks(result)
            return result
        finally:
            if holds_book:
                self._release_book(book_id)
            self._tokens.pop(key, None)
            self._paused.discard(key)

    async def retry(
        self,
        book_id: str,
        kind: TaskKind,
        on_progress: ProgressCallback | None = None,
    ) -> TaskEntry:
        return await self.run(book_id, kind, on_progress=on_progress)

    def pause(self, book_id: str, kind: TaskKind) -> bool:
        """Pause an active run; returns whether a run was active."""

        key = (book_id, kind)
        if key not in self._tokens:
            return False
        self._paused.add(key)
        return True

    def resume(self, book_id: str, kind: TaskKind) -> bool:
        key = (book_id, kind)
        if key not in self._paused:
            return False
        self._paused.discard(key)
        return True

    def is_paused(self, book_id: str, kind: TaskKind) -> bool:
        return (book_id, kind) in self._paused

    def cancel(self, book_id: str, kind: TaskKind) -> bool:
        """Request cancellation of an active run; returns whether a run was active."""

        token = self._tokens.get((book_id, kind))
        if token is None:
            return False
        token.cancel()
        return True

    def cancel_all(self) -> None:
        for token in self._tokens.values():
            token.cancel()

    async def recover(self) -> list[TaskEntry]:
        """Move entries left `running` by a dead process to `paused`."""

        recovered: list[TaskEntry] = []
        for book_id in await self.store.list_books():
            for entry in await self.store.list_entries(book_id):
                if (book_id, entry.kind) in self._tokens:
                    continue
                if entry.status is not TaskStatus.RUNNING:
                    continue
                entry.status = TaskStatus.PAUSED
                entry.touch()
                await self.store.save_chunks(entry)
                self.run_logger.warning("recover_interrupted", kind=entry.kind, book=book_id)
                recovered.append(entry)
        return recovered

    async def status(self, book_id: str) -> list[TaskEntry]:
        return await self.store.list_entries(book_id)

    async def reset(self, book_id: str, kind: TaskKind) -> bool:
        """Delete one entry so the next split starts from scratch."""

        if (book_id, kind) in self._tokens:
            raise BookgenError(f"Task `{kind.value}` for `{book_id}` is running; cancel it first.")
        return await self.store.delete_entry(book_id, kind)

    def _refuse_if_active(self, book_id: str) -> None:
        if any(active_book == book_id for active_book, _ in self._tokens):
            raise BookgenError(f"Book `{book_id}` has active runs; cancel them first.")

    async def _acquire_book(self, book_id: str) -> Book:
        """Return the book shared by every active run of `book_id`, loading it once."""

        shared = self._shared_books.get(book_id)
        if shared is None:
            shared = asyncio.ensure_future(self.store.load_book(book_id))
            self._shared_books[book_id] = shared
        self._book_users[book_id] = self._book_users.get(book_id, 0) + 1
        return await shared

    def _release_book(self, book_id: str) -> None:
        remaining = self._book_users.get(book_id, 0) - 1
        if remaining > 0:
            self._book_users[book_id] = remaining
            return
        self._book_users.pop(book_id, None)
        self._shared_books.pop(book_id, None)

    async def _record_status(
        self,
        book_id: str,
        kind: TaskKind,
        status: TaskStatus,
        error_message: str | None,
    ) -> None:
        entry = await self.store.load_chunks(book_id, kind)
        entry.status = status
        entry.error_message = error_message
        entry.touch()
        await self.store.save_chunks(entry)
