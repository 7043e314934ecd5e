from datetime import datetime, timedelta, timezone

import pytest

from comick_offline.exceptions import ConfigurationError
from comick_offline.models.config import SyncConfig
from comick_offline.storage.config_manager import ConfigManager
from comick_offline.utils.formatting import format_chapter_ranges, format_time_until


def test_missing_file_is_an_error_when_required(tmp_path):
    manager = ConfigManager(tmp_path / "config.ini")

    with pytest.raises(ConfigurationError, match="comick-offline init"):
        manager.load_config()


def test_missing_file_falls_back_to_defaults(tmp_path):
    config = ConfigManager(tmp_path / "config.ini").load_config(require_file=False)

    assert config.max_workers == 8
    assert config.batch_size == 50
    assert config.library_path == str(tmp_path / "library")


def test_saved_config_loads_with_overrides(tmp_path):
    manager = ConfigManager(tmp_path / "config.ini")
    manager.save_new_config({"max_workers": 4, "language": "EN"})

    config = manager.load_config({"batch_size": 20, "max_workers": None})

    assert config.max_workers == 4
    assert config.language == "en"
    assert config.batch_size == 20
    assert config.config_path == str(tmp_path)


def test_missing_keys_are_migrated(tmp_path):
    path = tmp_path / "config.ini"
    path.write_text("[DEFAULT]\nmax_workers = 6\n", encoding="utf-8")

    config = ConfigManager(path).load_config()

    assert config.max_workers == 6
    text = path.read_text(encoding="utf-8")
    assert "retry_attempts = 3" in text
    assert "asset_base_url = https://meo.comick.pictures" in text


@pytest.mark.parametrize(
    "line",
    ["max_workers = 64", "max_workers = many", "api_base_url = ftp://example"],
)
def test_invalid_values_are_rejected(tmp_path, line):
    path = tmp_path / "config.ini"
    path.write_text(f"[DEFAULT]\n{line}\n", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        ConfigManager(path).load_config()


def test_reset_threshold_cannot_undercut_consecutive_threshold():
    with pytest.raises(ValueError):
        SyncConfig(consecutive_failure_threshold=8, reset_trigger_threshold=4)


def test_format_time_until():
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    assert format_time_until(now + timedelta(hours=1), now).startswith("1 hour (")
    assert format_time_until(now + timedelta(days=3, hours=2), now).startswith("3 days (")
    assert format_time_until(now + timedelta(seconds=30), now).startswith("30 seconds (")


def test_format_chapter_ranges():
    assert format_chapter_ranges([5, 1, 2, 3, 7.5, 8]) == "1-3, 5, 7.5, 8"
    assert format_chapter_ranges([]) == "none"
