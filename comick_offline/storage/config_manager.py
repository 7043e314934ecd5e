"""
Manages loading, validation, and migration of the INI configuration file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from comick_offline.exceptions import ConfigurationError
from comick_offline.models.config import SyncConfig

log = logging.getLogger(__name__)


def _ini_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)

    @property
    def config_dir(self) -> Path:
        return self.config_file_path.parent

    def load_config(
        self,
        cli_options: dict[str, Any] | None = None,
        require_file: bool = True,
    ) -> SyncConfig:
        """
        Loads configuration from the INI file, applies CLI overrides, and validates it.

        Args:
            cli_options: A dictionary of options provided via the command line.
            require_file: If False, a missing file falls back to the defaults.

        Returns:
            A validated SyncConfig object.

        Raises:
            ConfigurationError: If the config file is missing, invalid, or validation
            fails.
        """
        config_from_file: dict[str, Any] = {}
        if self.config_file_path.is_file():
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(f"Error parsing configuration file: {e}") from e

            if self._migrate_if_needed():
                log.info(
                    "[yellow]Configuration file was updated with new default values."
                    "[/yellow]"
                )
            config_from_file = self._get_config_as_dict()
        elif require_file:
            raise ConfigurationError(
                f"Configuration file not found at '{self.config_file_path}'. "
                "Please run 'comick-offline init' first."
            )
        else:
            log.debug("No configuration file found; using defaults.")

        # Override with CLI options
        if cli_options:
            config_from_file.update(
                {k: v for k, v in cli_options.items() if v is not None}
            )
        config_from_file.setdefault("library_path", str(self.config_dir / "library"))

        try:
            return SyncConfig(**config_from_file, config_path=str(self.config_dir))
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any]) -> None:
        """
        Creates and saves a new configuration file.

        Args:
            settings: A dictionary of settings to save.
        """
        config = configparser.ConfigParser(interpolation=None)
        config["DEFAULT"] = {}

        try:
            validated = SyncConfig(**{k: v for k, v in settings.items() if v is not None})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings:\n{e}") from e

        for key in sorted(SyncConfig.get_ini_keys()):
            config["DEFAULT"][key] = _ini_value(getattr(validated, key))

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the known keys of the 'DEFAULT' section, converted to their field types."""
        section = self._parser["DEFAULT"]
        values: dict[str, Any] = {}
        for key in SyncConfig.get_ini_keys():
            if key not in section:
                continue
            annotation = SyncConfig.model_fields[key].annotation
            try:
                if annotation is int:
                    values[key] = section.getint(key)
                elif annotation is float:
                    values[key] = section.getfloat(key)
                elif annotation is bool:
                    values[key] = section.getboolean(key)
                else:
                    values[key] = section.get(key)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for '{key}' in configuration file: {e}"
                ) from e
        return values

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing config file."""
        defaults = SyncConfig()
        needs_saving = False

        config_section = self._parser["DEFAULT"]

        for key in sorted(SyncConfig.get_ini_keys()):
            if key not in config_section:
                config_section[key] = _ini_value(getattr(defaults, key))
                needs_saving = True
                log.debug(
                    f"Migrating config: added missing key '{key}' with "
                    f"value '{config_section[key]}'."
                )

        if needs_saving:
            try:
                with open(self.config_file_path, "w", encoding="utf-8") as f:
                    self._parser.write(f)
            except OSError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False

        return needs_saving
