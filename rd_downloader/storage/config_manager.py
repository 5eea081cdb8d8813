"""
Manages loading, validation, and migration of the INI configuration file.
"""

import configparser
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from rd_downloader.exceptions import ConfigurationError
from rd_downloader.models.config import AppConfig

log = logging.getLogger(__name__)

API_KEY_ENV_VAR = "REALDEBRID_API_KEY"

_INT_KEYS = {"max_workers", "queue_size", "rate_limit_per_minute", "rate_limit_burst"}
_FLOAT_KEYS = {
    "poll_interval",
    "ready_timeout",
    "download_timeout",
    "subtitle_timeout",
    "progress_interval",
}
_BOOL_KEYS = {"fetch_subtitles"}


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(self, cli_options: dict[str, Any] | None = None) -> AppConfig:
        """
        Loads configuration from the INI file, applies environment and CLI
        overrides, and validates it.

        Args:
            cli_options: A dictionary of options provided via the command line.

        Returns:
            A validated AppConfig object.

        Raises:
            ConfigurationError: If the config file is missing, invalid, or validation
            fails.
        """
        if not self.config_file_path.is_file():
            raise ConfigurationError(
                f"Configuration file not found at '{self.config_file_path}'. "
                "Please run 'rd-downloader init' first."
            )

        try:
            self._parser.read(self.config_file_path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigurationError(f"Error parsing configuration file: {e}") from e

        if self._migrate_if_needed():
            log.info(
                "[yellow]Configuration file was updated with new default values."
                "[/yellow]"
            )

        try:
            settings = self.get_config_as_dict()
        except ValueError as e:
            raise ConfigurationError(f"Invalid value in configuration file: {e}") from e

        if env_key := os.getenv(API_KEY_ENV_VAR):
            settings["api_key"] = env_key

        if cli_options:
            settings.update(cli_options)

        try:
            config_dir = self.config_file_path.parent
            return AppConfig(**settings, config_path=str(config_dir))
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any]) -> None:
        """
        Creates and saves a new configuration file.

        Args:
            settings: A dictionary of settings to save. Missing keys get defaults.
        """
        config = configparser.ConfigParser(interpolation=None)
        config["DEFAULT"] = {}

        defaults = AppConfig.model_construct()
        for key in sorted(AppConfig.get_ini_keys()):
            value = settings.get(key, getattr(defaults, key, None))
            config["DEFAULT"][key] = self._serialize(value)

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def get_config_as_dict(self) -> dict[str, Any]:
        """Reads the 'DEFAULT' section of the INI file into a typed dictionary."""
        if not self._parser.defaults():
            self._parser.read(self.config_file_path, encoding="utf-8")
        section = self._parser["DEFAULT"]
        result: dict[str, Any] = {}
        for key in AppConfig.get_ini_keys():
            if key not in section:
                continue
            if key in _INT_KEYS:
                result[key] = section.getint(key)
            elif key in _FLOAT_KEYS:
                result[key] = section.getfloat(key)
            elif key in _BOOL_KEYS:
                result[key] = section.getboolean(key)
            else:
                result[key] = section.get(key, "")
        return result

    @staticmethod
    def _serialize(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if value is None:
            return ""
        return str(value)

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing config file."""
        defaults = AppConfig.model_construct()
        needs_saving = False

        config_section = self._parser["DEFAULT"]

        for key in sorted(AppConfig.get_ini_keys()):
            if key not in config_section:
                config_section[key] = self._serialize(getattr(defaults, key))
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
