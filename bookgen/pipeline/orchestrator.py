"""Task run orchestration for one book and one generation kind.

Responsibilities:
- Reload the persisted chunk list and recover chunks left `running` by an
  interrupted process.
- Submit only `pending`/`failed` chunks, each holding one language pool slot,
  while processors fan media calls out into the media pool.
- Advance chunk status, report progress, and isolate per-chunk failures.
- Persist the book and chunk list per the configured cadence; raise on
  cancellation or persistence failure.

Key types:
- `TaskOrchestrator`: run driver with injected persistence, backends, and config.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
import inspect
from pathlib import Path

from ..config import BookgenConfig
from ..errors import CancellationRequested, PersistenceError
from ..io.storage import TaskPersistence
from ..llm.backends import GenerationBackend, LanguageModelBackend
from ..llm.rate_limiter import RateLimiter, RateLimiterRegistry
from ..models.datatypes import Book, Chunk, ChunkStatus, TaskEntry, TaskKind
from ..telemetry.logger import RunLogger
from .cancellation import CancellationToken
from .pools import WorkerPool
from .processors import ChunkContext, ChunkProcessor, IllustrationProcessor, TranslationProcessor
from .resume import progress_fraction, recover_interrupted_chunks, select_runnable_chunks

ProgressCallback = Callable[[float, Chunk], object]
PauseCheck = Callable[[], bool]


class TaskOrchestrator:
    """Drive resumable, pool-bounded generation runs."""

    def __init__(
        self,
        persistence: TaskPersistence,
        language_backend: LanguageModelBackend,
        media_backend: GenerationBackend,
        config: BookgenConfig,
        *,
        rate_limiters: RateLimiterRegistry | None = None,
        output_root: Path | None = None,
        processors: Mapping[TaskKind, ChunkProcessor] | None = None,
        run_logger: RunLogger | None = None,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.persistence = persistence
        self.config = config
        self.run_logger = run_logger if run_logger is not None else RunLogger()
        self.rate_limiters = (
            rate_limiters
            if rate_limiters is not None
            else RateLimiterRegistry(
                poll_interval_seconds=config.pause_poll_seconds,
                run_logger=self.run_logger,
            )
        )
        self._sleeper = sleeper
        media_root = output_root if output_root is not None else config.store_dir
        self.processors: dict[TaskKind, ChunkProcessor] = (
            dict(processors)
            if processors is not None
            else {
                TaskKind.ILLUSTRATION: IllustrationProcessor(
                    language_backend,
                    media_backend,
                    config,
                    media_root,
                    run_logger=self.run_logger,
                ),
                TaskKind.TRANSLATION: TranslationProcessor(
                    language_backend,
                    config,
                    run_logger=self.run_logger,
                ),
            }
        )
        self.pools: dict[str, WorkerPool] = {}

    async def run(
        self,
        book: Book,
        kind: TaskKind,
        token: CancellationToken,
        on_progress: ProgressCallback | None = None,
        is_paused: PauseCheck | None = None,
    ) -> TaskEntry:
        """Run all pending and failed chunks of `book` for `kind`.

        Returns:
            The task entry with updated chunk statuses.

        Raises:
            CancellationRequested: If `token` was canceled during the run.
            PersistenceError: If the book or chunk list could not be saved.
        """

        entry = await self.persistence.load_chunks(book.id, kind)
        for chunk in recover_interrupted_chunks(entry.chunks):
            self.run_logger.warning("recover_interrupted", kind=kind, chunk=chunk.id)

        runnable = select_runnable_chunks(entry.chunks)
        self.run_logger.info(
            "run_start",
            kind=kind,
            book=book.id,
            total=len(entry.chunks),
            runnable=len(runnable),
        )
        if not runnable:
            self._raise_if_run_canceled(token, book, kind)
            self.run_logger.info("run_skip_completed", kind=kind, book=book.id)
            return entry

        language = self.config.language_provider
        media = self.config.media_provider
        language_pool = WorkerPool("language", language.pool_size)
        media_pool = WorkerPool("media", media.pool_size)
        self.pools = {"language": language_pool, "media": media_pool}
        language_limiter = self.rate_limiters.limiter_for(
            f"{language.provider}:{language.name}", rpm=language.rpm, qps=language.qps
        )
        media_limiter = self.rate_limiters.limiter_for(
            f"{media.provider}:{media.name}", rpm=media.rpm, qps=media.qps
        )
        self.run_logger.info(
            "pool_ready",
            kind=kind,
            language_pool=language_pool.size,
            media_pool=media_pool.size,
        )

        processor = self.processors[kind]
        save_every_chunk = self.config.kind_settings(kind).save_every_chunk

        async def wait_if_paused() -> None:
            await self._wait_if_paused(token, is_paused)

        async def submit(chunk: Chunk) -> None:
            if token.is_canceled:
                return
            async with language_pool.slot():
                try:
                    await wait_if_paused()
                except CancellationRequested:
                    return
                previous_status = chunk.status
                chunk.status = ChunkStatus.RUNNING
                self.run_logger.info("chunk_running", kind=kind, chunk=chunk.id)
                await self._emit_progress(on_progress, entry, chunk)

                context = ChunkContext(
                    book=book,
                    chunk=chunk,
                    kind=kind,
                    token=token,
                    media_pool=media_pool,
                    language_limiter=language_limiter,
                    media_limiter=media_limiter,
                    wait_if_paused=wait_if_paused,
                )
                try:
                    await processor.process(context)
                except CancellationRequested:
                    chunk.status = previous_status
                    self.run_logger.info(
                        "chunk_rolled_back",
                        kind=kind,
                        chunk=chunk.id,
                        status=previous_status,
                    )
                    return
                except Exception as exc:
                    chunk.status = ChunkStatus.FAILED
                    self.run_logger.failure("chunk_failed", kind, exc, chunk=chunk.id)
                else:
                    chunk.status = ChunkStatus.COMPLETED
                    self.run_logger.info("chunk_completed", kind=kind, chunk=chunk.id)

            if save_every_chunk:
                await self._persist(book, entry, chunk=chunk.id)
            if not token.is_canceled:
                await self._emit_progress(on_progress, entry, chunk)

        results = await asyncio.gather(
            *(submit(chunk) for chunk in runnable),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, CancellationRequested):
                raise result

        self._raise_if_run_canceled(token, book, kind)

        await self._persist(book, entry)
        self.run_logger.info(
            "run_complete",
            kind=kind,
            book=book.id,
            progress=f"{progress_fraction(entry.chunks):.3f}",
            language_peak=language_pool.high_water_mark,
            media_peak=media_pool.high_water_mark,
        )
        return entry

    def _raise_if_run_canceled(self, token: CancellationToken, book: Book, kind: TaskKind) -> None:
        if token.is_canceled:
            self.run_logger.warning("run_canceled", kind=kind, book=book.id)
            raise CancellationRequested(f"Run for `{book.id}` ({kind.value}) was canceled.")

    async def _wait_if_paused(
        self,
        token: CancellationToken,
        is_paused: PauseCheck | None,
    ) -> None:
        while is_paused is not None and is_paused():
            token.raise_if_canceled()
            await self._sleeper(self.config.pause_poll_seconds)
        token.raise_if_canceled()

    async def _emit_progress(
        self,
        on_progress: ProgressCallback | None,
        entry: TaskEntry,
        chunk: Chunk,
    ) -> None:
        if on_progress is None:
            return
        outcome = on_progress(progress_fraction(entry.chunks), chunk)
        if inspect.isawaitable(outcome):
            await outcome

    async def _persist(self, book: Book, entry: TaskEntry, **context: object) -> None:
        """Save the book tree and chunk list, surfacing any failure as `PersistenceError`."""

        entry.touch()
        try:
            await self.persistence.save_book(book)
            await self.persistence.save_chunks(entry)
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(
                f"Failed to persist `{book.id}` ({entry.kind.value}): {exc}"
            ) from exc
        self.run_logger.debug("persist", kind=entry.kind, book=book.id, **context)
