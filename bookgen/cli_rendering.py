"""CLI output and error rendering helpers.

This module centralizes user-facing CLI presentation for command diagnostics,
task entry status rows, and run summaries.
"""

from __future__ import annotations

from typing import NoReturn

import typer

from .errors import CancellationRequested, PipelineStageError
from .models.datatypes import TaskEntry
from .pipeline.resume import count_by_status

CANCELED_EXIT_CODE = 130


def exit_with_command_error(command_name: str, exc: Exception) -> NoReturn:
    """Print concise diagnostics for command failures and exit with code 1."""

    if isinstance(exc, CancellationRequested):
        typer.secho(f"{command_name} canceled: {exc}", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=CANCELED_EXIT_CODE) from exc
    if isinstance(exc, PipelineStageError):
        typer.secho(
            f"{command_name} failed at stage `{exc.stage}`: {exc.detail}",
            fg=typer.colors.RED,
            err=True,
        )
        if exc.hint:
            typer.secho(f"Hint: {exc.hint}", fg=typer.colors.YELLOW, err=True)
    else:
        typer.secho(f"{command_name} failed: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


def format_chunk_counts(entry: TaskEntry) -> str:
    counts = count_by_status(entry.chunks)
    return " ".join(f"{status.value}={counts[status]}" for status in counts)


def echo_entry_status(entry: TaskEntry) -> None:
    """Print one deterministic status row for a task entry."""

    typer.echo(
        f"{entry.kind.value}: status={entry.status.value} "
        f"progress={entry.progress * 100:.1f}% chunks={len(entry.chunks)} "
        f"{format_chunk_counts(entry)}"
    )
    if entry.error_message:
        typer.echo(f"  last error: {entry.error_message}")


def echo_run_summary(entry: TaskEntry) -> None:
    """Print the final status of a run."""

    typer.echo(f"Task: {entry.book_id} ({entry.kind.value})")
    typer.echo(f"Status: {entry.status.value}")
    typer.echo(f"Progress: {entry.progress * 100:.1f}%")
    typer.echo(f"Chunks: {format_chunk_counts(entry)}")
    if entry.error_message:
        typer.echo(f"Last error: {entry.error_message}")
