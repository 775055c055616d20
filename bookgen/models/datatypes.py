"""Core datatypes shared across bookgen modules.

Responsibilities:
- Represent the book tree (book, chapters, lines) that generation writes into.
- Represent schedulable chunks and the per-kind task entry that owns them.
- Convert every record to and from JSON-compatible payloads for the store.

Key types:
- `Book`, `Chapter`, `Line`, `Chunk`, `TaskEntry`, and the status enums
  `ChunkStatus`, `TaskStatus`, `TaskKind`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from loguru import logger


class TaskKind(str, Enum):
    """Generation kinds that can run independently for the same book."""

    ILLUSTRATION = "illustration"
    TRANSLATION = "translation"

    @property
    def produces_units(self) -> bool:
        """Return whether chunks of this kind carry a `units_to_generate` budget."""

        return self is TaskKind.ILLUSTRATION


class ChunkStatus(str, Enum):
    """Lifecycle state of a chunk within a generation run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, Enum):
    """Entry-level status owned by the caller of a run."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


def utc_now() -> datetime:
    """Return the current timezone-aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    return datetime.fromisoformat(value.strip())


@dataclass(slots=True)
class Line:
    """One source line of a chapter plus the artifacts attached to it.

    Attributes:
        id: Stable line identifier, strictly increasing within a chapter.
        text: Source text of the line.
        illustration_paths: Generated media paths attached to this line.
        scene_description: Optional scene metadata for attached media.
        translated_text: Optional translation of `text`.
    """

    id: int
    text: str
    illustration_paths: list[str] = field(default_factory=list)
    scene_description: str | None = None
    translated_text: str | None = None

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "text": self.text,
            "illustration_paths": list(self.illustration_paths),
            "scene_description": self.scene_description,
            "translated_text": self.translated_text,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Line:
        return cls(
            id=int(payload["id"]),
            text=str(payload.get("text", "")),
            illustration_paths=[str(item) for item in payload.get("illustration_paths") or []],
            scene_description=payload.get("scene_description"),
            translated_text=payload.get("translated_text"),
        )


@dataclass(slots=True)
class Chapter:
    """An ordered list of lines with a stable chapter identifier."""

    id: str
    title: str
    lines: list[Line] = field(default_factory=list)

    def total_chars(self) -> int:
        """Return the total character count of all line texts."""

        return sum(len(line.text) for line in self.lines)

    def line_by_id(self, line_id: int) -> Line | None:
        """Return the line with `line_id`, or `None` when it does not exist."""

        for line in self.lines:
            if line.id == line_id:
                return line
        return None

    def lines_between(self, start_line_id: int, end_line_id: int) -> list[Line]:
        """Return lines whose id lies in the inclusive range."""

        return [line for line in self.lines if start_line_id <= line.id <= end_line_id]

    def add_illustrations(
        self,
        line_id: int,
        paths: list[str],
        description: str | None = None,
    ) -> bool:
        """Append media paths to a line and optionally replace its scene description.

        Returns:
            `True` when the line exists and was updated, `False` otherwise.
        """

        line = self.line_by_id(line_id)
        if line is None:
            logger.warning(
                "chapter {} has no line {}; dropping {} illustration path(s)",
                self.id,
                line_id,
                len(paths),
            )
            return False
        line.illustration_paths.extend(paths)
        if description is not None:
            line.scene_description = description
        return True

    def set_translation(self, line_id: int, translated_text: str) -> bool:
        """Store translated text on a line; returns whether the line exists."""

        line = self.line_by_id(line_id)
        if line is None:
            logger.warning("chapter {} has no line {}; dropping translation", self.id, line_id)
            return False
        line.translated_text = translated_text
        return True

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "lines": [line.to_payload() for line in self.lines],
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Chapter:
        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title", "")),
            lines=[Line.from_payload(item) for item in payload.get("lines") or []],
        )


@dataclass(slots=True)
class Book:
    """A parsed book: an ordered list of chapters."""

    id: str
    title: str
    chapters: list[Chapter] = field(default_factory=list)

    def chapter_by_id(self, chapter_id: str) -> Chapter | None:
        for chapter in self.chapters:
            if chapter.id == chapter_id:
                return chapter
        return None

    def lines_in_range(self, chunk: Chunk) -> list[Line]:
        """Return the lines a chunk selects, or an empty list for an unknown chapter."""

        chapter = self.chapter_by_id(chunk.chapter_id)
        if chapter is None:
            return []
        return chapter.lines_between(chunk.start_line_id, chunk.end_line_id)

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "chapters": [chapter.to_payload() for chapter in self.chapters],
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Book:
        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title", "")),
            chapters=[Chapter.from_payload(item) for item in payload.get("chapters") or []],
        )


@dataclass(slots=True)
class Chunk:
    """A contiguous line range within one chapter; the unit of schedulable work.

    Attributes:
        id: Stable chunk identifier.
        chapter_id: Identifier of the owning chapter.
        start_line_id: Inclusive first line id.
        end_line_id: Inclusive last line id.
        status: Current lifecycle state.
        units_to_generate: Independent items to produce for units kinds, else `None`.
    """

    id: str
    chapter_id: str
    start_line_id: int
    end_line_id: int
    status: ChunkStatus = ChunkStatus.PENDING
    units_to_generate: int | None = None

    @property
    def is_runnable(self) -> bool:
        """Return whether a run should submit this chunk."""

        return self.status in (ChunkStatus.PENDING, ChunkStatus.FAILED)

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "id": self.id,
            "chapter_id": self.chapter_id,
            "start_line_id": self.start_line_id,
            "end_line_id": self.end_line_id,
            "status": self.status.value,
        }
        if self.units_to_generate is not None:
            payload["units_to_generate"] = self.units_to_generate
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Chunk:
        units = payload.get("units_to_generate")
        return cls(
            id=str(payload["id"]),
            chapter_id=str(payload["chapter_id"]),
            start_line_id=int(payload["start_line_id"]),
            end_line_id=int(payload["end_line_id"]),
            status=ChunkStatus(payload.get("status", ChunkStatus.PENDING.value)),
            units_to_generate=int(units) if units is not None else None,
        )


@dataclass(slots=True)
class TaskEntry:
    """A book's chunk list for one generation kind plus its overall status."""

    book_id: str
    kind: TaskKind
    chunks: list[Chunk] = field(default_factory=list)
    status: TaskStatus = TaskStatus.NOT_STARTED
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def progress(self) -> float:
        """Return the completed fraction of this entry's chunks."""

        if not self.chunks:
            return 1.0 if self.status is TaskStatus.COMPLETED else 0.0
        completed = sum(1 for chunk in self.chunks if chunk.status is ChunkStatus.COMPLETED)
        return completed / len(self.chunks)

    def touch(self) -> None:
        """Refresh `updated_at` and backfill `created_at` when missing."""

        now = utc_now()
        if self.created_at is None:
            self.created_at = now
        self.updated_at = now

    def to_payload(self) -> dict[str, object]:
        return {
            "book_id": self.book_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "error_message": self.error_message,
            "created_at": _format_timestamp(self.created_at),
            "updated_at": _format_timestamp(self.updated_at),
            "chunks": [chunk.to_payload() for chunk in self.chunks],
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> TaskEntry:
        return cls(
            book_id=str(payload["book_id"]),
            kind=TaskKind(payload["kind"]),
            status=TaskStatus(payload.get("status", TaskStatus.NOT_STARTED.value)),
            error_message=payload.get("error_message"),
            created_at=_parse_timestamp(payload.get("created_at")),
            updated_at=_parse_timestamp(payload.get("updated_at")),
            chunks=[Chunk.from_payload(item) for item in payload.get("chunks") or []],
        )
