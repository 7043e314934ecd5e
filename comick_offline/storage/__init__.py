"""
Storage Layer.

This package handles all data persistence, including the configuration file,
the global translator ranking and the offline library database.
"""

from .config_manager import ConfigManager
from .library import LibraryStore
from .rankings_store import RankingsStore

__all__ = ["ConfigManager", "LibraryStore", "RankingsStore"]
