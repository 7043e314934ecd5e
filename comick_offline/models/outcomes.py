"""
Result objects returned by the sync engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional, Union

from comick_offline.exceptions import ConflictError
from comick_offline.models.entities import ChapterRecord, format_chapter_number

# (completed, total, status, phase) where phase is "setup", "chapters" or "images".
ProgressCallback = Callable[[int, int, str, str], None]


@dataclass
class FutureChaptersNotice:
    """Chapters that were selected but are not published yet."""

    chapters: list[ChapterRecord]
    earliest_release: datetime
    time_until_available: str

    @property
    def message(self) -> str:
        chapter_list = ", ".join(
            f"Chapter {c.chap}" for c in self.chapters if c.chap is not None
        )
        verb = "is" if len(self.chapters) == 1 else "are"
        return (
            f"{chapter_list} {verb} not yet available for download. "
            f"They will be available in {self.time_until_available}."
        )


ConfirmCallback = Callable[
    [FutureChaptersNotice], Union[bool, Awaitable[bool]]
]


@dataclass
class UpdateResult:
    new_chapters: int = 0
    conflicts: list[ChapterRecord] = field(default_factory=list)
    series_id: Optional[str] = None

    def raise_for_conflicts(self) -> None:
        """Raises ConflictError if the update was held back by translator conflicts."""
        if self.conflicts:
            raise ConflictError(self.series_id or "", self.conflicts)


@dataclass
class SyncReport:
    """Summary of a run in which every selected chapter was downloaded."""

    series_id: str
    title: str
    completed_chapters: list[float] = field(default_factory=list)
    skipped_future: list[ChapterRecord] = field(default_factory=list)

    @property
    def chapter_count(self) -> int:
        return len(self.completed_chapters)

    def describe(self) -> str:
        if not self.completed_chapters:
            return f"{self.title}: nothing to download."
        first = format_chapter_number(self.completed_chapters[0])
        last = format_chapter_number(self.completed_chapters[-1])
        return (
            f"{self.title}: downloaded {self.chapter_count} chapter(s) "
            f"({first}-{last})."
        )
