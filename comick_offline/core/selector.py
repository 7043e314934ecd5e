"""
Release selection: picks one release per chapter number according to the
translator preferences of a series.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from comick_offline.models.entities import (
    ChapterRecord,
    TranslatorInfo,
    TranslatorPreferences,
)

log = logging.getLogger(__name__)


def group_by_number(records: Iterable[ChapterRecord]) -> Dict[float, List[ChapterRecord]]:
    """Groups records by numeric chapter value, keeping input order. Non-numeric records are dropped."""
    groups: Dict[float, List[ChapterRecord]] = {}
    for record in records:
        number = record.number
        if number is None:
            continue
        groups.setdefault(number, []).append(record)
    return groups


def _pick(
    releases: List[ChapterRecord], preferences: TranslatorPreferences
) -> ChapterRecord:
    for release in releases:
        if release.translator == preferences.primary:
            return release

    if preferences.allow_backup_override:
        for backup in preferences.backups:
            for release in releases:
                if release.translator == backup:
                    return release

    return releases[0]


def select_releases(
    records: Iterable[ChapterRecord], preferences: TranslatorPreferences
) -> List[ChapterRecord]:
    """
    Returns exactly one release per distinct chapter number, sorted ascending.

    Precedence per chapter: the primary translator, then the backups in order
    (only when backup override is allowed), then the first release listed.
    """
    groups = group_by_number(records)
    selected = [_pick(groups[number], preferences) for number in sorted(groups)]
    log.debug(
        f"Selected {len(selected)} release(s) with primary '{preferences.primary}'"
    )
    return selected


def summarize_translators(records: Iterable[ChapterRecord]) -> List[TranslatorInfo]:
    """Builds the per-translator snapshot, most recently active translators first."""
    numbers: Dict[str, set] = {}
    for record in records:
        number = record.number
        if number is None:
            continue
        numbers.setdefault(record.translator, set()).add(number)

    summary = [
        TranslatorInfo(
            name=name,
            chapters=sorted(chapters),
            latest_chapter=max(chapters),
        )
        for name, chapters in numbers.items()
    ]
    summary.sort(key=lambda t: (-t.latest_chapter, -len(t.chapters), t.name))
    return summary


def find_conflicts(
    records: Iterable[ChapterRecord], preferences: TranslatorPreferences
) -> List[ChapterRecord]:
    """Records attributed to a translator that is neither the primary nor a backup."""
    return [r for r in records if not preferences.permits(r.translator)]


def apply_chapter_floor(
    records: Iterable[ChapterRecord], floor: Optional[float]
) -> List[ChapterRecord]:
    if floor is None:
        return list(records)
    return [r for r in records if r.number is not None and r.number >= floor]


def partition_future(
    records: Iterable[ChapterRecord], now: datetime
) -> Tuple[List[ChapterRecord], List[ChapterRecord]]:
    """Splits records into (published, future) where future means publish time strictly after ``now``."""
    available, future = [], []
    for record in records:
        (available if record.is_published(now) else future).append(record)
    return available, future


def distinct_chapter_count(records: Iterable[ChapterRecord]) -> int:
    return len(group_by_number(records))
