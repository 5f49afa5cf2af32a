"""
Configuration management for storesync.

This module handles loading, validating, and saving configuration settings.
"""

from storesync.config.settings import (
    DEFAULT_CONFIG_DIR,
    AssetConfig,
    BackupConfig,
    ConfigurationError,
    RemoteConfig,
    Settings,
    StorageConfig,
    load_config,
    save_config,
)

__all__ = [
    "Settings",
    "StorageConfig",
    "AssetConfig",
    "RemoteConfig",
    "BackupConfig",
    "load_config",
    "save_config",
    "ConfigurationError",
    "DEFAULT_CONFIG_DIR",
]
