"""Chunk state helpers shared by the orchestrator and the task manager.

Responsibilities:
- Recover chunks left `running` by an interrupted process.
- Select the chunks a run must submit, in source order.
- Compute progress and derive the entry-level status from chunk states.
"""

from __future__ import annotations

from ..models.datatypes import Chunk, ChunkStatus, TaskEntry, TaskStatus


def recover_interrupted_chunks(chunks: list[Chunk]) -> list[Chunk]:
    """Reset every `running` chunk to `failed` and return the recovered chunks.

    A chunk found `running` at run start belongs to a process that died
    mid-flight; marking it failed makes it retryable.
    """

    recovered: list[Chunk] = []
    for chunk in chunks:
        if chunk.status is ChunkStatus.RUNNING:
            chunk.status = ChunkStatus.FAILED
            recovered.append(chunk)
    return recovered


def select_runnable_chunks(chunks: list[Chunk]) -> list[Chunk]:
    """Return `pending` and `failed` chunks in their original order."""

    return [chunk for chunk in chunks if chunk.is_runnable]


def progress_fraction(chunks: list[Chunk]) -> float:
    """Return completed/total over all chunks, including ones completed earlier."""

    if not chunks:
        return 1.0
    completed = sum(1 for chunk in chunks if chunk.status is ChunkStatus.COMPLETED)
    return completed / len(chunks)


def count_by_status(chunks: list[Chunk]) -> dict[ChunkStatus, int]:
    counts = {status: 0 for status in ChunkStatus}
    for chunk in chunks:
        counts[chunk.status] += 1
    return counts


def derive_entry_status(entry: TaskEntry) -> TaskStatus:
    """Derive the aggregate entry status after a non-canceled run."""

    counts = count_by_status(entry.chunks)
    if counts[ChunkStatus.FAILED] or counts[ChunkStatus.RUNNING]:
        return TaskStatus.FAILED
    if counts[ChunkStatus.PENDING]:
        return TaskStatus.PAUSED
    return TaskStatus.COMPLETED
