"""
Helper functions for formatting data into human-readable strings.
"""

from datetime import datetime, timezone
from typing import Iterable

from comick_offline.models.entities import format_chapter_number


def format_size(bytes_size: int) -> str:
    """Formats bytes into a human-readable size string (e.g., '145.3 MB')."""
    if bytes_size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(bytes_size)
    i = 0
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f"{size:.1f} {units[i]}"


def format_duration(seconds: float) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., '2h 34m 12s').
    """
    s = int(seconds)
    hours, remainder = divmod(s, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'s' if count != 1 else ''}"


def format_time_until(release: datetime, now: datetime | None = None) -> str:
    """
    Describes how long until ``release`` in the largest whole unit, followed by
    the local release time, e.g. '2 days (2026-10-20 14:05)' or '1 hour (14:05:00)'.
    """
    now = now or datetime.now(timezone.utc)
    total_seconds = max(0, int((release - now).total_seconds()))
    minutes, _ = divmod(total_seconds, 60)
    hours, _ = divmod(minutes, 60)
    days, _ = divmod(hours, 24)
    local = release.astimezone()

    if days > 0:
        return f"{_plural(days, 'day')} ({local:%Y-%m-%d %H:%M})"
    if hours > 0:
        return f"{_plural(hours, 'hour')} ({local:%H:%M:%S})"
    if minutes > 0:
        return f"{_plural(minutes, 'minute')} ({local:%H:%M:%S})"
    return f"{_plural(total_seconds, 'second')} ({local:%H:%M:%S})"


def format_chapter_ranges(numbers: Iterable[float]) -> str:
    """
    Collapses chapter numbers into ranges of consecutive integers,
    e.g. [1, 2, 3, 5, 7.5] -> '1-3, 5, 7.5'.
    """
    ordered = sorted(set(numbers))
    if not ordered:
        return "none"

    parts = []
    start = prev = ordered[0]
    for number in ordered[1:]:
        if number == prev + 1 and number == int(number) and prev == int(prev):
            prev = number
            continue
        parts.append(_range_label(start, prev))
        start = prev = number
    parts.append(_range_label(start, prev))
    return ", ".join(parts)


def _range_label(start: float, end: float) -> str:
    if start == end:
        return format_chapter_number(start)
    return f"{format_chapter_number(start)}-{format_chapter_number(end)}"
