"""
Remote backup and restore.

Usage:
    from storesync.sync import HttpBackupProvider, SyncOrchestrator

    provider = HttpBackupProvider(settings.remote.endpoint, records, preferences)
    orchestrator = SyncOrchestrator(principals, provider, preferences)
    result = orchestrator.create_backup()
"""

from storesync.sync.orchestrator import SyncOrchestrator, SyncResult
from storesync.sync.remote import (
    HttpBackupProvider,
    NotAuthenticatedError,
    RemoteBackupError,
    RemoteBackupProvider,
)

__all__ = [
    "SyncOrchestrator",
    "SyncResult",
    "NotAuthenticatedError",
    "RemoteBackupProvider",
    "HttpBackupProvider",
    "RemoteBackupError",
]
