"""
Global translator ranking shared across series.

All functions are pure: they take the current ranking and return a new one.
"""

from typing import Dict, Iterable, List

from comick_offline.exceptions import ConfigurationError
from comick_offline.models.entities import (
    Series,
    TranslatorPreferences,
    TranslatorRanking,
)


def _chapter_counts(series: Iterable[Series]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for s in series:
        for translator in s.translators:
            counts[translator.name] = counts.get(translator.name, 0) + len(
                translator.chapters
            )
    return counts


def _by_volume(counts: Dict[str, int]) -> List[str]:
    return sorted(counts, key=lambda name: (-counts[name], name))


def default_rankings(series: Iterable[Series]) -> List[TranslatorRanking]:
    """Ranks every known translator by total chapter count, all enabled."""
    return [
        TranslatorRanking(name=name, priority=i, is_enabled=True)
        for i, name in enumerate(_by_volume(_chapter_counts(series)))
    ]


def merge_new_translators(
    series: Iterable[Series], existing: List[TranslatorRanking]
) -> List[TranslatorRanking]:
    """
    Keeps existing rankings whose translator is still present and appends the
    new translators after them, by chapter count, with continuing priorities.
    """
    counts = _chapter_counts(series)
    kept = sorted(
        (r for r in existing if r.name in counts), key=lambda r: r.priority
    )
    known = {r.name for r in kept}
    next_priority = max((r.priority for r in kept), default=-1) + 1

    added = [
        TranslatorRanking(name=name, priority=next_priority + i, is_enabled=True)
        for i, name in enumerate(n for n in _by_volume(counts) if n not in known)
    ]
    return [r.model_copy() for r in kept] + added


def preferences_from_rankings(
    rankings: List[TranslatorRanking],
) -> TranslatorPreferences:
    """The first enabled translator becomes primary; the rest are backups."""
    enabled = [r.name for r in sorted(rankings, key=lambda r: r.priority) if r.is_enabled]
    if not enabled:
        raise ConfigurationError("No translator is enabled in the global ranking.")
    return TranslatorPreferences(
        primary=enabled[0], backups=enabled[1:], allow_backup_override=True
    )


def _find(rankings: List[TranslatorRanking], name: str) -> int:
    for i, ranking in enumerate(rankings):
        if ranking.name == name:
            return i
    raise ConfigurationError(f"Translator '{name}' is not in the ranking.")


def _renumber(rankings: List[TranslatorRanking]) -> List[TranslatorRanking]:
    return [r.model_copy(update={"priority": i}) for i, r in enumerate(rankings)]


def move_translator(
    rankings: List[TranslatorRanking], name: str, direction: str
) -> List[TranslatorRanking]:
    """Moves a translator one place ``"up"`` or ``"down"`` and renumbers priorities."""
    if direction not in ("up", "down"):
        raise ConfigurationError(f"Invalid direction '{direction}', use 'up' or 'down'.")
    ordered = sorted(rankings, key=lambda r: r.priority)
    index = _find(ordered, name)
    target = index - 1 if direction == "up" else index + 1
    if 0 <= target < len(ordered):
        ordered[index], ordered[target] = ordered[target], ordered[index]
    return _renumber(ordered)


def toggle_translator(
    rankings: List[TranslatorRanking], name: str
) -> List[TranslatorRanking]:
    index = _find(rankings, name)
    return [
        r.model_copy(update={"is_enabled": not r.is_enabled}) if i == index else r.model_copy()
        for i, r in enumerate(rankings)
    ]
