"""Application settings management.

This module handles loading, saving, and managing application settings
with atomic file operations and automatic backup, and derives the timing
profile used by the streaming engine and the connection registry.
"""

import json
import os
import sys
import shutil
import logging
from dataclasses import dataclass
from typing import Dict, Any, Optional
from pathlib import Path

from .constants import (
    BAUD_DEFAULT,
    COMMAND_BOOT_DELAY,
    COMMAND_RESPONSE_WINDOW,
    COMPLETION_GRACE_DELAY,
    CONFIG_DIR_ENV,
    MAX_CONSECUTIVE_TIMEOUTS,
    PERSISTENT_BOOT_DELAY,
    PERSISTENT_RESPONSE_WINDOW,
    PORT_DEFAULT,
    RESPONSE_TIMEOUT,
    SETTINGS_FILENAME,
    SETTINGS_BACKUP_SUFFIX,
    SETTINGS_TEMP_SUFFIX,
    SETTLE_DELAY,
    STREAM_BOOT_DELAY,
    VALID_BAUD_RATES,
)
from .exceptions import (
    InvalidParameterError,
    SettingsLoadError,
    SettingsSaveError,
    SettingsValidationError,
)
from .validation import validate_interval, validate_positive_int

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, Any] = {
    "port": PORT_DEFAULT,
    "baud_rate": BAUD_DEFAULT,
    "persist_queue": True,
    "timing": {
        "settle_delay": SETTLE_DELAY,
        "stream_boot_delay": STREAM_BOOT_DELAY,
        "persistent_boot_delay": PERSISTENT_BOOT_DELAY,
        "command_boot_delay": COMMAND_BOOT_DELAY,
        "response_timeout": RESPONSE_TIMEOUT,
        "max_consecutive_timeouts": MAX_CONSECUTIVE_TIMEOUTS,
        "completion_grace_delay": COMPLETION_GRACE_DELAY,
        "persistent_response_window": PERSISTENT_RESPONSE_WINDOW,
        "command_response_window": COMMAND_RESPONSE_WINDOW,
    },
}


def _deep_merge_defaults(defaults: Dict[str, Any], loaded: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    for key, default_val in defaults.items():
        if key in loaded:
            loaded_val = loaded[key]
            if isinstance(default_val, dict) and isinstance(loaded_val, dict):
                merged[key] = _deep_merge_defaults(default_val, loaded_val)
            else:
                merged[key] = loaded_val
        else:
            merged[key] = default_val
    for key, loaded_val in loaded.items():
        if key not in merged:
            merged[key] = loaded_val
    return merged


def _copy_defaults() -> Dict[str, Any]:
    return json.loads(json.dumps(DEFAULT_SETTINGS))


def get_default_settings_dir() -> str:
    """Get default directory for settings storage.

    Returns:
        Path to settings directory
    """
    env_dir = os.getenv(CONFIG_DIR_ENV)
    if env_dir:
        return env_dir

    if sys.platform.startswith("win"):
        base = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA")
    else:
        base = os.getenv("XDG_CONFIG_HOME")

    if not base:
        base = os.path.expanduser("~")

    return os.path.join(base, "QueueSender")


def get_settings_path() -> str:
    """Get path to settings file.

    Creates directory if it doesn't exist.
    Falls back to a dot-directory in the home directory if creation fails.

    Returns:
        Full path to settings file
    """
    base_dir = get_default_settings_dir()

    try:
        os.makedirs(base_dir, exist_ok=True)
    except OSError as e:
        logger.warning(f"Failed to create settings directory: {e}")
        fallback_dir = os.path.join(os.path.expanduser("~"), ".queue_sender")
        try:
            os.makedirs(fallback_dir, exist_ok=True)
            base_dir = fallback_dir
        except OSError:
            base_dir = os.getcwd()

    return os.path.join(base_dir, SETTINGS_FILENAME)


@dataclass(frozen=True)
class StreamTimings:
    """Delays, deadlines and limits shared by the streamer and the registry."""

    settle_delay: float = SETTLE_DELAY
    stream_boot_delay: float = STREAM_BOOT_DELAY
    persistent_boot_delay: float = PERSISTENT_BOOT_DELAY
    command_boot_delay: float = COMMAND_BOOT_DELAY
    response_timeout: float = RESPONSE_TIMEOUT
    max_consecutive_timeouts: int = MAX_CONSECUTIVE_TIMEOUTS
    completion_grace_delay: float = COMPLETION_GRACE_DELAY
    persistent_response_window: float = PERSISTENT_RESPONSE_WINDOW
    command_response_window: float = COMMAND_RESPONSE_WINDOW

    @classmethod
    def from_settings(cls, settings: "Settings") -> "StreamTimings":
        """Build a validated timing profile from the ``timing`` section."""
        raw = settings.get("timing", {}) or {}
        values: Dict[str, Any] = {}
        for name, default in DEFAULT_SETTINGS["timing"].items():
            value = raw.get(name, default)
            if name == "max_consecutive_timeouts":
                values[name] = validate_positive_int(value, name)
            else:
                values[name] = validate_interval(value, name=name)
        return cls(**values)


class Settings:
    """Application settings manager.

    Handles loading, saving, and accessing application settings with
    atomic file operations and automatic backup.

    Example:
        settings = Settings()
        settings.load()
        settings.set("port", "/dev/ttyACM0")
        settings.save()
    """

    def __init__(self, filepath: Optional[str] = None):
        """Initialize settings manager.

        Args:
            filepath: Optional custom settings file path
        """
        self.filepath = filepath or get_settings_path()
        self.data: Dict[str, Any] = _copy_defaults()
        logger.debug(f"Settings file: {self.filepath}")

    def load(self) -> bool:
        """Load settings from file.

        Returns:
            True if loaded successfully, False if no file exists

        Raises:
            SettingsLoadError: If the file exists but cannot be read
        """
        if not os.path.exists(self.filepath):
            logger.info("No settings file found, using defaults")
            return False

        try:
            with open(self.filepath, "r", encoding="utf-8") as f:
                loaded_data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in settings file: {e}")
            raise SettingsLoadError(f"Invalid JSON: {e}")
        except OSError as e:
            logger.error(f"Failed to read settings file: {e}")
            raise SettingsLoadError(f"Failed to read file: {e}")

        if not isinstance(loaded_data, dict):
            raise SettingsLoadError("Settings file must contain a JSON object")

        self.data = _deep_merge_defaults(_copy_defaults(), loaded_data)
        logger.info("Settings loaded successfully")
        return True

    def save(self) -> None:
        """Save settings to file atomically.

        Raises:
            SettingsSaveError: If save fails
        """
        filepath = Path(self.filepath)
        temp_path = Path(str(filepath) + SETTINGS_TEMP_SUFFIX)
        backup_path = Path(str(filepath) + SETTINGS_BACKUP_SUFFIX)

        try:
            filepath.parent.mkdir(parents=True, exist_ok=True)

            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(self.data, f, indent=2, sort_keys=True)

            if filepath.exists():
                try:
                    shutil.copy2(filepath, backup_path)
                except OSError as e:
                    logger.warning(f"Failed to create backup: {e}")

            temp_path.replace(filepath)
            logger.info("Settings saved successfully")

        except OSError as e:
            logger.error(f"Failed to write settings: {e}")
            raise SettingsSaveError(f"Failed to save: {e}")

        finally:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass

    def get(self, key: str, default: Any = None) -> Any:
        """Get setting value.

        Args:
            key: Setting key (supports dot notation for nested keys)
            default: Default value if key not found

        Returns:
            Setting value or default
        """
        keys = key.split(".")
        value = self.data

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """Set setting value.

        Args:
            key: Setting key (supports dot notation for nested keys)
            value: Value to set
        """
        keys = key.split(".")

        if len(keys) == 1:
            self.data[key] = value
        else:
            current = self.data
            for k in keys[:-1]:
                if k not in current or not isinstance(current[k], dict):
                    current[k] = {}
                current = current[k]
            current[keys[-1]] = value

    def reset_to_defaults(self) -> None:
        """Reset all settings to defaults."""
        self.data = _copy_defaults()
        logger.info("Settings reset to defaults")

    def validate(self) -> bool:
        """Validate current settings.

        Returns:
            True if valid

        Raises:
            SettingsValidationError: If validation fails
        """
        if not isinstance(self.data, dict):
            raise SettingsValidationError("Settings must be a dictionary")

        baud = self.data.get("baud_rate")
        if baud not in VALID_BAUD_RATES:
            raise SettingsValidationError(f"Invalid baud rate: {baud}")

        port = self.data.get("port")
        if not isinstance(port, str) or not port.strip():
            raise SettingsValidationError(f"Invalid port: {port!r}")

        try:
            self.timings()
        except InvalidParameterError as e:
            raise SettingsValidationError(str(e))

        return True

    def timings(self) -> StreamTimings:
        """Timing profile derived from the current settings."""
        return StreamTimings.from_settings(self)

    def queue_path(self, filename: str) -> str:
        """Path of a data file stored next to the settings file."""
        return os.path.join(os.path.dirname(os.path.abspath(self.filepath)), filename)
