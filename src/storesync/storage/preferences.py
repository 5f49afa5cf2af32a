"""
Key-value preference storage.

Preferences are grouped into named namespaces (``user_preferences``,
``login_tracking``, ``app_preferences``...), each persisted as one JSON file:

    preferences/
        {namespace}.json

Every write rewrites the namespace file atomically (temp file + rename), so
a crash never leaves a half-written file behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

from storesync.storage.record_store import StorageError

logger = logging.getLogger(__name__)

# Namespaces shared by the restore, sync and backup flows
USER_PREFERENCES = "user_preferences"
LOGIN_TRACKING = "login_tracking"
THEME_PREFERENCES = "theme_preferences"
APP_PREFERENCES = "app_preferences"
UI_PREFS_MIRROR = "ui_prefs_mirror"
UI_PREFERENCES = "ui_preferences"
BACKUP_DATA = "backup_data"
USER_DATA = "user_data"

LAST_BACKUP_TIME = "last_backup_time"
LAST_REMOTE_BACKUP_TIME = "last_firebase_backup_time"


class Preferences:
    """
    One preference namespace.

    Getters never raise for a missing key or a value of the wrong type;
    they return the supplied default instead.
    """

    def __init__(self, path: Path, lock: threading.Lock) -> None:
        self.path = path
        self._lock = lock

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable preferences file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(suffix=".json", dir=str(self.path.parent))
        try:
            with os.fdopen(temp_fd, "w") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(temp_path, self.path)
        except OSError as e:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise StorageError(f"Cannot write preferences {self.path.name}: {e}") from e

    def all(self) -> dict[str, Any]:
        return self._load()

    def contains(self, key: str) -> bool:
        return key in self._load()

    def get_string(self, key: str, default: str | None = None) -> str | None:
        value = self._load().get(key)
        return value if isinstance(value, str) else default

    def get_int(self, key: str, default: int = 0) -> int:
        value = self._load().get(key)
        if isinstance(value, bool) or not isinstance(value, int):
            return default
        return value

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = self._load().get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return default
        return float(value)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._load().get(key)
        return value if isinstance(value, bool) else default

    def put(self, key: str, value: Any) -> None:
        """Store one value. None removes the key."""
        self.update({key: value})

    def update(self, values: Mapping[str, Any]) -> None:
        """
        Store several values in a single write. None values remove keys.

        Raises:
            StorageError: If the namespace file cannot be written.
        """
        with self._lock:
            data = self._load()
            for key, value in values.items():
                if value is None:
                    data.pop(key, None)
                else:
                    data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        self.update({key: None})

    def clear(self) -> None:
        with self._lock:
            self._write({})


class PreferenceStore:
    """
    File-backed preference store.

    Example:
        store = PreferenceStore(Path("./data/preferences"))
        prefs = store.namespace("backup_data")
        prefs.put("last_backup_time", 1700000000000)
        prefs.get_int("last_backup_time")
    """

    def __init__(self, base_dir: Path | str) -> None:
        self.base_dir = Path(base_dir)
        self._lock = threading.Lock()

    def namespace(self, name: str) -> Preferences:
        return Preferences(self.base_dir / f"{name}.json", self._lock)

    def last_backup_time(self) -> int | None:
        """Epoch ms of the last successful backup, if any."""
        value = self.namespace(BACKUP_DATA).get_int(LAST_BACKUP_TIME, 0)
        return value or None


class PrincipalResolver(Protocol):
    """Resolves the id of the currently authenticated user."""

    def current_principal(self) -> str | None: ...


class PreferencePrincipalResolver:
    """Reads the signed-in user id from the ``user_data`` namespace."""

    def __init__(self, store: PreferenceStore) -> None:
        self._prefs = store.namespace(USER_DATA)

    def current_principal(self) -> str | None:
        user_id = self._prefs.get_string("user_id")
        return user_id or None


class StaticPrincipalResolver:
    """Always resolves to the same user id."""

    def __init__(self, principal_id: str | None) -> None:
        self.principal_id = principal_id

    def current_principal(self) -> str | None:
        return self.principal_id
