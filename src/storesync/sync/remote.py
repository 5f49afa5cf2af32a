"""
Remote backup provider.

A remote backup is the bare snapshot document (no images) stored per user
by a backup service:

    POST <endpoint>/users/<user id>/backups           upload a snapshot
    GET  <endpoint>/users/<user id>/backups/latest    download the newest

HttpBackupProvider talks to that service with a requests session and maps
requests exceptions and HTTP errors to RemoteBackupError.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol
from urllib.parse import quote

import requests

from storesync.backup.restorer import RestoreError, TransactionalRestorer
from storesync.progress import ProgressCallback, ProgressReporter
from storesync.snapshot.codec import dumps, encode
from storesync.storage.dataset import LocalDataset
from storesync.storage.preferences import PreferenceStore, StaticPrincipalResolver
from storesync.storage.record_store import RecordStore

logger = logging.getLogger(__name__)


class RemoteBackupError(Exception):
    """Raised when the remote backup service fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class NotAuthenticatedError(Exception):
    """Raised when no user is signed in."""

    def __init__(self, message: str = "User not authenticated") -> None:
        super().__init__(message)


class RemoteBackupProvider(Protocol):
    """Pushes and restores full backups for one user."""

    def push_full_backup(
        self, principal_id: str, progress: ProgressCallback | None = None
    ) -> str: ...

    def restore_by_principal(
        self, principal_id: str, progress: ProgressCallback | None = None
    ) -> str: ...


class HttpBackupProvider:
    """
    Remote backup provider over HTTP.

    Example:
        provider = HttpBackupProvider(
            endpoint="https://backup.example.com/api",
            records=records,
            preferences=preferences,
        )
        provider.push_full_backup("user-1")
    """

    def __init__(
        self,
        endpoint: str,
        records: RecordStore,
        preferences: PreferenceStore,
        restorer: TransactionalRestorer | None = None,
        timeout: float = 60.0,
        app_version: str = "1.0",
        session: requests.Session | None = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.records = records
        self.preferences = preferences
        self.restorer = restorer
        self.timeout = timeout
        self.app_version = app_version
        self._session = session

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({"Accept": "application/json"})
        return self._session

    def backups_url(self, principal_id: str) -> str:
        return f"{self.endpoint}/users/{quote(principal_id, safe='')}/backups"

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        if not self.endpoint:
            raise RemoteBackupError("No remote backup endpoint configured")

        start_time = time.time()
        try:
            response = self._get_session().request(
                method, url, timeout=self.timeout, **kwargs
            )
        except requests.exceptions.Timeout as e:
            raise RemoteBackupError(f"Request timed out: {e}") from e
        except requests.exceptions.ConnectionError as e:
            raise RemoteBackupError(f"Connection failed: {e}") from e
        except requests.exceptions.RequestException as e:
            raise RemoteBackupError(f"Request failed: {e}") from e

        duration_ms = (time.time() - start_time) * 1000
        logger.debug(f"{method} {url} -> {response.status_code} ({duration_ms:.0f}ms)")

        if response.status_code in (401, 403):
            raise RemoteBackupError("Access denied by backup service", response.status_code)
        if response.status_code >= 400:
            raise RemoteBackupError(
                f"Backup service returned HTTP {response.status_code}",
                response.status_code,
            )
        return response

    def push_full_backup(
        self, principal_id: str, progress: ProgressCallback | None = None
    ) -> str:
        """
        Upload a snapshot of the local dataset.

        Returns:
            Summary message.

        Raises:
            RemoteBackupError: If the upload fails.
        """
        reporter = ProgressReporter(progress)
        reporter.report(0, "Preparing backup...")
        dataset = LocalDataset(
            self.records, self.preferences, principal_id, app_version=self.app_version
        )
        snapshot = encode(dataset)
        reporter.report(40, "Uploading backup...")

        self._request(
            "POST",
            self.backups_url(principal_id),
            data=dumps(snapshot, indent=None),
            headers={"Content-Type": "application/json"},
        )
        reporter.report(100, "Backup uploaded")
        message = f"Remote backup completed: {snapshot.record_count} records"
        logger.info(message)
        return message

    def restore_by_principal(
        self, principal_id: str, progress: ProgressCallback | None = None
    ) -> str:
        """
        Download the newest remote backup and restore it.

        Returns:
            Summary message of the restore.

        Raises:
            RemoteBackupError: If there is no backup or the download fails.
            RestoreError: If the downloaded snapshot cannot be applied.
        """
        reporter = ProgressReporter(progress)
        reporter.report(0, "Downloading backup...")
        try:
            response = self._request("GET", f"{self.backups_url(principal_id)}/latest")
        except RemoteBackupError as e:
            if e.status_code == 404:
                raise RemoteBackupError("No remote backup found", 404) from e
            raise

        restorer = self.restorer or TransactionalRestorer(
            self.records, self.preferences, StaticPrincipalResolver(principal_id)
        )
        reporter.report(10, "Backup downloaded")
        result = restorer.restore_from_json(response.content, reporter.scaled(10, 100))
        if not result.success:
            raise RestoreError(result.error or "Restore failed")
        return result.message

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
