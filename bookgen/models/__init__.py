"""Shared typed data models for bookgen.

This package contains dataclasses used across pipeline modules to avoid
cross-module coupling and circular imports.
"""

from .datatypes import (
    Book,
    Chapter,
    Chunk,
    ChunkStatus,
    Line,
    TaskEntry,
    TaskKind,
    TaskStatus,
)

__all__ = [
    "Book",
    "Chapter",
    "Chunk",
    "ChunkStatus",
    "Line",
    "TaskEntry",
    "TaskKind",
    "TaskStatus",
]
