"""
Data Models Layer.

This package contains the Pydantic models and result objects that define the
core data structures used throughout the application: configuration, remote
chapter records, library entities and sync outcomes.
"""

from .config import SyncConfig
from .entities import (
    Chapter,
    ChapterRecord,
    ImageEntry,
    ResumeDescriptor,
    Series,
    TranslatorInfo,
    TranslatorPreferences,
    TranslatorRanking,
)
from .outcomes import FutureChaptersNotice, SyncReport, UpdateResult

__all__ = [
    "Chapter",
    "ChapterRecord",
    "FutureChaptersNotice",
    "ImageEntry",
    "ResumeDescriptor",
    "Series",
    "SyncConfig",
    "SyncReport",
    "TranslatorInfo",
    "TranslatorPreferences",
    "TranslatorRanking",
    "UpdateResult",
]
