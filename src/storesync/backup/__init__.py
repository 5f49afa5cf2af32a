"""
Backup archives and transactional restore.

Usage:
    from storesync.backup import BackupManager

    manager = BackupManager.from_settings(settings)
    result = manager.create_backup()
    if result.success:
        print(f"Backup created: {result.path}")
"""

from storesync.backup.manager import (
    BackupInfo,
    BackupManager,
    BackupResult,
    BackupStatus,
)
from storesync.backup.packager import (
    DOCUMENT_NAME,
    ArchiveError,
    ArchiveNotFoundError,
    PackResult,
    UnpackedArchive,
    pack,
    read_document,
    unpack,
    verify,
)
from storesync.backup.restorer import (
    RelinkResult,
    RestoreError,
    RestoreResult,
    TransactionalRestorer,
)

__all__ = [
    "BackupManager",
    "BackupInfo",
    "BackupResult",
    "BackupStatus",
    "TransactionalRestorer",
    "RestoreResult",
    "RelinkResult",
    "RestoreError",
    "ArchiveError",
    "ArchiveNotFoundError",
    "PackResult",
    "UnpackedArchive",
    "DOCUMENT_NAME",
    "pack",
    "unpack",
    "verify",
    "read_document",
]
