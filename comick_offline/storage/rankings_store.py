"""
Persists the global translator ranking as a JSON file in the config directory.
"""

import json
import logging
import os
from pathlib import Path
from typing import List

from pydantic import TypeAdapter, ValidationError

from comick_offline.exceptions import ConfigurationError
from comick_offline.models.entities import TranslatorRanking

log = logging.getLogger(__name__)

RANKINGS_FILENAME = "translator_rankings.json"

_rankings_adapter = TypeAdapter(List[TranslatorRanking])


class RankingsStore:
    """Reads and writes ``translator_rankings.json``."""

    def __init__(self, config_dir: Path):
        self.path = Path(config_dir) / RANKINGS_FILENAME

    def load(self) -> List[TranslatorRanking]:
        """Returns the stored ranking ordered by priority, or an empty list if none exists."""
        if not self.path.is_file():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            rankings = _rankings_adapter.validate_python(data.get("rankings", []))
        except (OSError, json.JSONDecodeError, ValidationError, AttributeError) as e:
            raise ConfigurationError(
                f"Could not read translator rankings from '{self.path}': {e}"
            ) from e
        return sorted(rankings, key=lambda r: r.priority)

    def save(self, rankings: List[TranslatorRanking]) -> None:
        payload = {
            "rankings": [r.model_dump() for r in sorted(rankings, key=lambda r: r.priority)]
        }
        temp_path = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(temp_path, self.path)
        except OSError as e:
            raise ConfigurationError(
                f"Could not save translator rankings to '{self.path}': {e}"
            ) from e
        log.debug(f"Saved {len(rankings)} translator ranking(s) to {self.path}")
