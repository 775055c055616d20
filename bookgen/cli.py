"""Command-line interface for bookgen.

Responsibilities:
- Expose user-facing commands for importing books and managing task entries.
- Resolve `BookgenConfig` from YAML, environment, and CLI overrides.
- Run task entries with per-chunk progress lines and Ctrl+C cancellation.

Key public functions:
- `app`: Typer application instance.
- `main`: invoke the Typer application.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
import json
from pathlib import Path
import signal
from typing import Annotated

import typer

from .cli_rendering import echo_entry_status, echo_run_summary, exit_with_command_error
from .config import BookgenConfig, ConfigLoader
from .errors import PipelineStageError
from .io.storage import JsonTaskStore
from .models.datatypes import Book, Chunk, TaskEntry, TaskKind
from .pipeline.orchestrator import TaskOrchestrator
from .pipeline.task_manager import TaskManager
from .provider_factory import ProviderFactory
from .telemetry.logger import RunLogger

app = typer.Typer(
    name="bookgen",
    no_args_is_help=True,
    help="bookgen CLI: resumable illustration and translation tasks for books.",
)

StoreOption = Annotated[
    Path | None,
    typer.Option("--store", help="Task store directory (overrides config file value)."),
]
ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", help="Path to YAML config file."),
]
KindOption = Annotated[
    TaskKind,
    typer.Option("--kind", case_sensitive=False, help="Generation kind."),
]


class RunProgressIndicator:
    """Render deterministic per-chunk progress lines for a run."""

    def __init__(self, command_name: str, kind: TaskKind) -> None:
        self._command_name = command_name
        self._kind = kind

    def on_progress(self, fraction: float, chunk: Chunk) -> None:
        typer.echo(
            f"[progress] command={self._command_name} kind={self._kind.value} "
            f"{fraction * 100:.1f}% chunk={chunk.id} status={chunk.status.value}"
        )


def _load_yaml_config(config_path: Path | None) -> BookgenConfig | None:
    """Load a YAML config file when requested and map failures to stage errors."""

    if config_path is None:
        return None

    try:
        return ConfigLoader.from_yaml(config_path)
    except FileNotFoundError as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Config file not found: `{config_path}`.",
            hint="Provide an existing path via `--config <path.yaml>`.",
        ) from exc
    except ValueError as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Invalid config file `{config_path}`: {exc}",
            hint="Fix config schema/values and rerun.",
        ) from exc


def _resolve_config(config_file: Path | None, store: Path | None) -> BookgenConfig:
    """Resolve effective config from YAML defaults, environment, and CLI overrides."""

    loaded = _load_yaml_config(config_file)
    try:
        config = ConfigLoader.from_env(base=loaded)
    except ValueError as exc:
        raise PipelineStageError(
            stage="config",
            detail=str(exc),
            hint="Fix the `BOOKGEN_*` environment variables and rerun.",
        ) from exc
    if store is not None:
        config = replace(config, store_dir=store)
    return config


def _create_manager(config: BookgenConfig, *, with_providers: bool = False) -> TaskManager:
    run_logger = RunLogger()
    store = JsonTaskStore(config.store_dir)
    orchestrator: TaskOrchestrator | None = None
    if with_providers:
        try:
            language_backend = ProviderFactory.create_language_backend(config.language_provider)
            media_backend = ProviderFactory.create_media_backend(config.media_provider)
        except ValueError as exc:
            raise PipelineStageError(
                stage="providers",
                detail=str(exc),
                hint="Set `provider: openai` in the config file.",
            ) from exc
        orchestrator = TaskOrchestrator(
            store,
            language_backend,
            media_backend,
            config,
            run_logger=run_logger,
        )
    return TaskManager(store, config, orchestrator, run_logger=run_logger)


def _read_book_file(path: Path) -> Book:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise PipelineStageError(
            stage="import",
            detail=f"Book file not found: `{path}`.",
        ) from exc
    except json.JSONDecodeError as exc:
        raise PipelineStageError(
            stage="import",
            detail=f"Book file `{path}` is not valid JSON: {exc}",
        ) from exc
    try:
        return Book.from_payload(payload)
    except (KeyError, TypeError, ValueError) as exc:
        raise PipelineStageError(
            stage="import",
            detail=f"Book file `{path}` is malformed: {exc}",
            hint="Provide `id`, `title`, and `chapters` with `id`/`lines` entries.",
        ) from exc


async def _run_with_interrupt(manager: TaskManager, book_id: str, kind: TaskKind) -> TaskEntry:
    """Run one entry, turning SIGINT into cooperative cancellation."""

    loop = asyncio.get_running_loop()
    handler_installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, manager.cancel_all)
        handler_installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        handler_installed = False

    progress = RunProgressIndicator(command_name="run", kind=kind)
    try:
        await manager.recover()
        return await manager.run(book_id, kind, on_progress=progress.on_progress)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)


@app.command("import-book")
def import_book_command(
    book_file: Annotated[Path, typer.Argument(help="Path to a book JSON document.")],
    store: StoreOption = None,
    config_file: ConfigOption = None,
    overwrite: Annotated[
        bool,
        typer.Option("--overwrite", help="Replace an existing book with the same id."),
    ] = False,
) -> None:
    """Import a parsed book tree into the task store."""

    try:
        config = _resolve_config(config_file, store)
        book = _read_book_file(book_file)
        manager = _create_manager(config)
        asyncio.run(manager.import_book(book, overwrite=overwrite))
    except Exception as exc:
        exit_with_command_error("import-book", exc)

    typer.echo(f"Book: {book.id}")
    typer.echo(f"Chapters: {len(book.chapters)}")
    typer.echo(f"Store: {config.store_dir}")


@app.command("split")
def split_command(
    book_id: Annotated[str, typer.Argument(help="Identifier of an imported book.")],
    kind: KindOption = TaskKind.ILLUSTRATION,
    store: StoreOption = None,
    config_file: ConfigOption = None,
    force: Annotated[
        bool,
        typer.Option("--force", help="Re-split and replace an existing chunk list."),
    ] = False,
) -> None:
    """Split a book into chunks for one generation kind."""

    try:
        config = _resolve_config(config_file, store)
        manager = _create_manager(config)
        entry = asyncio.run(manager.split(book_id, kind, force=force))
    except Exception as exc:
        exit_with_command_error("split", exc)

    typer.echo(f"Task: {book_id} ({kind.value})")
    typer.echo(f"Chunks: {len(entry.chunks)}")
    if kind.produces_units:
        units = sum(chunk.units_to_generate or 0 for chunk in entry.chunks)
        typer.echo(f"Units: {units}")


@app.command("run")
def run_command(
    book_id: Annotated[str, typer.Argument(help="Identifier of an imported book.")],
    kind: KindOption = TaskKind.ILLUSTRATION,
    store: StoreOption = None,
    config_file: ConfigOption = None,
) -> None:
    """Run (or resume) all pending and failed chunks of one task."""

    try:
        config = _resolve_config(config_file, store)
        manager = _create_manager(config, with_providers=True)
        entry = asyncio.run(_run_with_interrupt(manager, book_id, kind))
    except Exception as exc:
        exit_with_command_error("run", exc)

    echo_run_summary(entry)


@app.command("status")
def status_command(
    book_id: Annotated[str, typer.Argument(help="Identifier of an imported book.")],
    store: StoreOption = None,
    config_file: ConfigOption = None,
) -> None:
    """Show per-kind task status for a book."""

    try:
        config = _resolve_config(config_file, store)
        manager = _create_manager(config)
        entries = asyncio.run(manager.status(book_id))
    except Exception as exc:
        exit_with_command_error("status", exc)

    if not entries:
        typer.echo(f"No tasks for `{book_id}`.")
        return
    for entry in entries:
        echo_entry_status(entry)


@app.command("reset")
def reset_command(
    book_id: Annotated[str, typer.Argument(help="Identifier of an imported book.")],
    kind: KindOption = TaskKind.ILLUSTRATION,
    store: StoreOption = None,
    config_file: ConfigOption = None,
) -> None:
    """Delete one task entry so the book can be re-split."""

    try:
        config = _resolve_config(config_file, store)
        manager = _create_manager(config)
        removed = asyncio.run(manager.reset(book_id, kind))
    except Exception as exc:
        exit_with_command_error("reset", exc)

    if removed:
        typer.echo(f"Removed task: {book_id} ({kind.value})")
    else:
        typer.echo(f"No task to remove: {book_id} ({kind.value})")


@app.command("delete-book")
def delete_book_command(
    book_id: Annotated[str, typer.Argument(help="Identifier of an imported book.")],
    store: StoreOption = None,
    config_file: ConfigOption = None,
) -> None:
    """Delete a book together with its task entries and generated media."""

    try:
        config = _resolve_config(config_file, store)
        manager = _create_manager(config)
        removed = asyncio.run(manager.delete_book(book_id))
    except Exception as exc:
        exit_with_command_error("delete-book", exc)

    if removed:
        typer.echo(f"Removed book: {book_id}")
    else:
        typer.echo(f"No book to remove: {book_id}")


def main() -> None:
    """Run the bookgen CLI application."""

    app()


if __name__ == "__main__":
    main()
