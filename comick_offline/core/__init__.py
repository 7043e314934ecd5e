"""
Core sync engine.

The `SyncController` coordinates whole-series operations, delegating the
chapter listing to the `CatalogFetcher`, release choice to the selector and
the page images of each chapter to the `BatchOrchestrator`.
"""

from .catalog import CatalogFetcher
from .orchestrator import BatchOrchestrator, ChapterDownloadResult
from .sync_controller import SyncController

__all__ = [
    "BatchOrchestrator",
    "CatalogFetcher",
    "ChapterDownloadResult",
    "SyncController",
]
