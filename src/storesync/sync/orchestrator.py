"""
Remote backup orchestration for the signed-in user.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from storesync.backup.restorer import RestoreError
from storesync.progress import ProgressCallback, ProgressReporter
from storesync.snapshot.fields import now_millis
from storesync.storage.preferences import (
    BACKUP_DATA,
    LAST_BACKUP_TIME,
    LAST_REMOTE_BACKUP_TIME,
    PreferenceStore,
    PrincipalResolver,
)
from storesync.storage.record_store import StorageError
from storesync.sync.remote import (
    NotAuthenticatedError,
    RemoteBackupError,
    RemoteBackupProvider,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Result of a remote backup or restore."""

    success: bool
    value: str | None = None
    error: str | None = None


class SyncOrchestrator:
    """
    Runs remote backups and restores for the current principal.

    Example:
        orchestrator = SyncOrchestrator(principals, provider, preferences)
        result = orchestrator.create_backup()
    """

    def __init__(
        self,
        principals: PrincipalResolver,
        provider: RemoteBackupProvider,
        preferences: PreferenceStore,
    ) -> None:
        self.principals = principals
        self.provider = provider
        self.preferences = preferences

    def _require_principal(self) -> str:
        principal = self.principals.current_principal()
        if not principal or not principal.strip():
            raise NotAuthenticatedError()
        return principal

    def create_backup(self, progress: ProgressCallback | None = None) -> SyncResult:
        """
        Push a full backup for the current principal.

        The last backup times are only recorded when the push succeeds.
        """
        reporter = ProgressReporter(progress)
        try:
            principal = self._require_principal()
            value = self.provider.push_full_backup(principal, progress)
        except (NotAuthenticatedError, RemoteBackupError) as e:
            logger.error(f"Remote backup failed: {e}")
            reporter.fail(str(e))
            return SyncResult(success=False, error=str(e))

        now = now_millis()
        try:
            self.preferences.namespace(BACKUP_DATA).update(
                {LAST_REMOTE_BACKUP_TIME: now, LAST_BACKUP_TIME: now}
            )
        except StorageError as e:
            logger.warning(f"Could not record backup time: {e}")
        return SyncResult(success=True, value=value)

    def restore_latest(self, progress: ProgressCallback | None = None) -> SyncResult:
        """Restore the newest remote backup of the current principal."""
        reporter = ProgressReporter(progress)
        try:
            principal = self._require_principal()
            value = self.provider.restore_by_principal(principal, progress)
        except (NotAuthenticatedError, RemoteBackupError, RestoreError) as e:
            logger.error(f"Remote restore failed: {e}")
            reporter.fail(str(e))
            return SyncResult(success=False, error=str(e))
        return SyncResult(success=True, value=value)
