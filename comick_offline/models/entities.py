"""
Pydantic models for remote chapter records and the entities persisted in the
local library.
"""

import math
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNKNOWN_TRANSLATOR = "Unknown"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_chapter_number(value: Any) -> Optional[float]:
    """
    Parses a chapter number such as ``"12"`` or ``"12.5"``.

    Returns None for missing, non-numeric and non-finite values, which callers
    exclude from selection.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def format_chapter_number(number: float) -> str:
    """Formats 12.0 as '12' and 12.5 as '12.5'."""
    return f"{number:g}" if number != int(number) else str(int(number))


class ChapterRecord(BaseModel):
    """One release of one chapter as listed by the remote catalog."""

    model_config = ConfigDict(extra="ignore")

    hid: str
    id: Optional[int] = None
    chap: Optional[str] = None
    vol: Optional[str] = None
    title: Optional[str] = None
    lang: str = "en"
    publish_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    up_count: int = 0
    group_name: Optional[list[str]] = None
    md_chapters_groups: Optional[list[dict[str, Any]]] = None
    identities: Optional[dict[str, Any]] = None

    @field_validator("chap", mode="before")
    @classmethod
    def coerce_chap(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)

    @field_validator("publish_at", "created_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def number(self) -> Optional[float]:
        return parse_chapter_number(self.chap)

    @property
    def translator(self) -> str:
        """
        The attributed translator, resolved in order from the first linked group
        title, the raw group-name list, the uploader's username, then 'Unknown'.
        """
        if self.md_chapters_groups:
            group = self.md_chapters_groups[0].get("md_groups") or {}
            if title := group.get("title"):
                return title
        if self.group_name:
            return self.group_name[0]
        traits = (self.identities or {}).get("traits") or {}
        if username := traits.get("username"):
            return username
        return UNKNOWN_TRANSLATOR

    def is_published(self, now: datetime) -> bool:
        return self.publish_at is None or self.publish_at <= now


class ImageEntry(BaseModel):
    """One page of a chapter image manifest."""

    model_config = ConfigDict(extra="ignore")

    b2key: str
    w: int = 0
    h: int = 0
    s: int = 0
    name: Optional[str] = None


class TranslatorInfo(BaseModel):
    name: str
    chapters: list[float] = Field(default_factory=list)
    latest_chapter: float = 0.0


class TranslatorPreferences(BaseModel):
    primary: str
    backups: list[str] = Field(default_factory=list)
    allow_backup_override: bool = True

    def permits(self, translator: str) -> bool:
        """True if the translator is the primary or one of the backups."""
        return translator == self.primary or translator in self.backups


class TranslatorRanking(BaseModel):
    name: str
    priority: int
    is_enabled: bool = True


class LastReadChapter(BaseModel):
    chapter_number: str
    chapter_hid: str
    read_at: datetime = Field(default_factory=utcnow)


class Series(BaseModel):
    """A series in the local library."""

    id: str
    title: str
    slug: str
    hid: str
    cover_url: str = ""
    total_chapters: int = 0
    downloaded_chapters: list[float] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utcnow)
    info: dict[str, Any] = Field(default_factory=dict, repr=False)
    translators: list[TranslatorInfo] = Field(default_factory=list, repr=False)
    translator_preferences: TranslatorPreferences
    last_read_chapter: Optional[LastReadChapter] = None
    min_chapter: Optional[float] = None


class Chapter(BaseModel):
    """A downloaded chapter. ``images`` holds image ids in page order."""

    series_id: str
    chapter_number: str
    chapter_hid: str
    translator: str
    images: list[str] = Field(default_factory=list)
    downloaded_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @property
    def number(self) -> Optional[float]:
        return parse_chapter_number(self.chapter_number)


class ResumeDescriptor(BaseModel):
    """Everything needed to continue an interrupted download."""

    series_id: str
    slug: str = ""
    completed_chapters: list[float] = Field(default_factory=list)
    remaining: list[ChapterRecord] = Field(default_factory=list)
    preferences: Optional[TranslatorPreferences] = None
    min_chapter: Optional[float] = None
    kind: str = "network"
    recorded_at: datetime = Field(default_factory=utcnow)
