"""
Configuration settings management for storesync.

This module handles loading, validating, and saving configuration settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.storesync/config.yaml by default, with the
path overridable via the STORESYNC_CONFIG environment variable.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".storesync"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

DEFAULT_STORAGE_DOMAIN = "firebasestorage.googleapis.com"


@dataclass
class StorageConfig:
    """Local record and preference storage."""

    data_dir: str = str(DEFAULT_CONFIG_DIR / "data")
    database_file: str = "storesync.db"
    preferences_dir: str = "preferences"


@dataclass
class AssetConfig:
    """Local image locations and remote object storage."""

    cache_dir: str = str(DEFAULT_CONFIG_DIR / "cache")
    external_dir: str = str(DEFAULT_CONFIG_DIR / "files")
    storage_domain: str = DEFAULT_STORAGE_DOMAIN
    storage_base_url: str = f"https://{DEFAULT_STORAGE_DOMAIN}/v0/b"
    bucket: str = ""
    download_timeout: float = 30.0
    max_retries: int = 3


@dataclass
class RemoteConfig:
    """Remote backup provider endpoint."""

    endpoint: str = ""
    timeout: float = 60.0


@dataclass
class BackupConfig:
    """Archive backup settings."""

    output_dir: str = str(DEFAULT_CONFIG_DIR / "backups")
    app_version: str = "1.0"


@dataclass
class Settings:
    """
    Complete storesync configuration settings.

    Settings are loaded from a YAML configuration file and can be overridden
    by environment variables prefixed with STORESYNC_.

    Attributes:
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        storage: SQLite database and preference file locations.
        assets: Image directories and object storage access.
        remote: Remote backup provider settings.
        backup: Archive output settings.
    """

    log_level: str = "INFO"

    storage: StorageConfig = field(default_factory=StorageConfig)
    assets: AssetConfig = field(default_factory=AssetConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)

    @property
    def database_path(self) -> Path:
        return Path(self.storage.data_dir) / self.storage.database_file

    @property
    def preferences_path(self) -> Path:
        return Path(self.storage.data_dir) / self.storage.preferences_dir


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from STORESYNC_CONFIG environment variable if set,
    otherwise returns the default path (~/.storesync/config.yaml).
    """
    env_path = os.environ.get("STORESYNC_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or default if not provided),
    applies environment variable overrides, and validates the configuration.

    Args:
        config_path: Optional path to configuration file. If not provided,
                    uses STORESYNC_CONFIG environment variable or default path.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = get_config_path()

    settings = Settings()

    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping")

        settings = _apply_config_data(settings, config_data)

    settings = _apply_environment_overrides(settings)

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    if "log_level" in data:
        settings.log_level = str(data["log_level"]).upper()

    storage = data.get("storage") or {}
    if "data_dir" in storage:
        settings.storage.data_dir = str(storage["data_dir"])
    if "database_file" in storage:
        settings.storage.database_file = str(storage["database_file"])
    if "preferences_dir" in storage:
        settings.storage.preferences_dir = str(storage["preferences_dir"])

    assets = data.get("assets") or {}
    if "cache_dir" in assets:
        settings.assets.cache_dir = str(assets["cache_dir"])
    if "external_dir" in assets:
        settings.assets.external_dir = str(assets["external_dir"])
    if "storage_domain" in assets:
        settings.assets.storage_domain = str(assets["storage_domain"])
    if "storage_base_url" in assets:
        settings.assets.storage_base_url = str(assets["storage_base_url"])
    if "bucket" in assets:
        settings.assets.bucket = str(assets["bucket"])
    try:
        if "download_timeout" in assets:
            settings.assets.download_timeout = float(assets["download_timeout"])
        if "max_retries" in assets:
            settings.assets.max_retries = int(assets["max_retries"])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid assets setting: {e}") from e

    remote = data.get("remote") or {}
    if "endpoint" in remote:
        settings.remote.endpoint = str(remote["endpoint"])
    if "timeout" in remote:
        try:
            settings.remote.timeout = float(remote["timeout"])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid remote timeout: {e}") from e

    backup = data.get("backup") or {}
    if "output_dir" in backup:
        settings.backup.output_dir = str(backup["output_dir"])
    if "app_version" in backup:
        settings.backup.app_version = str(backup["app_version"])

    return settings


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "STORESYNC_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "STORESYNC_DATA_DIR": ("storage.data_dir", str),
        "STORESYNC_CACHE_DIR": ("assets.cache_dir", str),
        "STORESYNC_EXTERNAL_DIR": ("assets.external_dir", str),
        "STORESYNC_BUCKET": ("assets.bucket", str),
        "STORESYNC_REMOTE_ENDPOINT": ("remote.endpoint", str),
        "STORESYNC_BACKUP_DIR": ("backup.output_dir", str),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_nested_attr(settings, attr_path, converter(value))

    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """Set a nested attribute on an object using dot notation."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(valid_log_levels))}"
        )

    if settings.assets.download_timeout <= 0:
        raise ConfigurationError("download_timeout must be positive")

    if settings.assets.max_retries < 0:
        raise ConfigurationError("max_retries must not be negative")

    if settings.remote.timeout <= 0:
        raise ConfigurationError("remote timeout must be positive")

    if settings.remote.endpoint and not settings.remote.endpoint.startswith(
        ("http://", "https://")
    ):
        raise ConfigurationError(
            f"Invalid remote endpoint: {settings.remote.endpoint}. "
            "Must start with http:// or https://"
        )


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "log_level": settings.log_level,
        "storage": {
            "data_dir": settings.storage.data_dir,
            "database_file": settings.storage.database_file,
            "preferences_dir": settings.storage.preferences_dir,
        },
        "assets": {
            "cache_dir": settings.assets.cache_dir,
            "external_dir": settings.assets.external_dir,
            "storage_domain": settings.assets.storage_domain,
            "storage_base_url": settings.assets.storage_base_url,
            "bucket": settings.assets.bucket,
            "download_timeout": settings.assets.download_timeout,
            "max_retries": settings.assets.max_retries,
        },
        "remote": {
            "endpoint": settings.remote.endpoint,
            "timeout": settings.remote.timeout,
        },
        "backup": {
            "output_dir": settings.backup.output_dir,
            "app_version": settings.backup.app_version,
        },
    }
