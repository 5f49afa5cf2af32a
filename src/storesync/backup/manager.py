"""
Backup and restore manager for storesync.

Drives the archive flows end to end:

    create_backup:   encode dataset -> download remote photos -> scan local
                     images -> pack archive -> record last backup time
    restore_backup:  unpack archive -> decode document -> apply in one
                     transaction -> re-link photos to the extracted images

Backups are stored as tar.gz archives with SHA-256 checksums for every
image entry, see storesync.backup.packager for the layout.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from storesync.assets.object_storage import HttpObjectStorageClient
from storesync.assets.resolver import AssetLocations, AssetResolver
from storesync.backup.packager import (
    ARCHIVE_PREFIX,
    ARCHIVE_SUFFIX,
    ArchiveError,
    pack,
    read_document,
    unpack,
    verify,
)
from storesync.backup.restorer import RestoreResult, TransactionalRestorer
from storesync.config.settings import Settings
from storesync.progress import (
    NEVER_CANCELLED,
    CancellationToken,
    OperationCancelledError,
    ProgressCallback,
    ProgressReporter,
)
from storesync.snapshot.codec import Snapshot, SnapshotDecodeError, decode, dumps, encode
from storesync.snapshot.schema import SECTIONS
from storesync.storage.dataset import LocalDataset
from storesync.storage.preferences import (
    BACKUP_DATA,
    LAST_BACKUP_TIME,
    PreferencePrincipalResolver,
    PreferenceStore,
    PrincipalResolver,
)
from storesync.storage.record_store import RecordStore, StorageError

logger = logging.getLogger(__name__)


@dataclass
class BackupInfo:
    """Summary of an archive, read from its snapshot document."""

    path: Path
    version: str
    timestamp: int
    metadata: dict[str, Any]
    counts: dict[str, int]
    image_count: int
    size_bytes: int

    @property
    def record_count(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["path"] = str(self.path)
        data["record_count"] = self.record_count
        return data

    @classmethod
    def from_document(cls, path: Path, document: dict[str, Any]) -> BackupInfo:
        """Create from a parsed snapshot document."""
        counts = {}
        for section in SECTIONS:
            entries = document.get(section.key)
            counts[section.key] = len(entries) if isinstance(entries, list) else 0
        metadata = document.get("metadata")
        checksums = document.get("assetChecksums")
        timestamp = document.get("timestamp")
        return cls(
            path=path,
            version=str(document.get("version") or "unknown"),
            timestamp=timestamp if isinstance(timestamp, int) else 0,
            metadata=metadata if isinstance(metadata, dict) else {},
            counts=counts,
            image_count=len(checksums) if isinstance(checksums, dict) else 0,
            size_bytes=path.stat().st_size,
        )

    @classmethod
    def from_snapshot(cls, path: Path, snapshot: Snapshot) -> BackupInfo:
        return cls(
            path=path,
            version=snapshot.version,
            timestamp=snapshot.timestamp,
            metadata=dict(snapshot.metadata),
            counts=snapshot.counts(),
            image_count=len(snapshot.asset_checksums),
            size_bytes=path.stat().st_size,
        )


@dataclass
class BackupResult:
    """Result of a backup operation."""

    success: bool
    path: Path | None = None
    info: BackupInfo | None = None
    size_bytes: int = 0
    images_packed: int = 0
    images_downloaded: int = 0
    skipped: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class BackupStatus:
    """State of local data and of the backups made from it."""

    last_backup_time: int | None
    counts: dict[str, int]
    database_size_bytes: int
    output_dir: Path
    backups: list[Path] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_backup_time": self.last_backup_time,
            "counts": dict(self.counts),
            "database_size_bytes": self.database_size_bytes,
            "output_dir": str(self.output_dir),
            "backups": [str(p) for p in self.backups],
        }


class BackupManager:
    """
    Manages backup and restore operations for the local dataset.

    Creates portable tar.gz archives containing:
    - backup_data.json with every record, the user profile and settings
    - Product photos, the profile photo and the business logo

    Example:
        manager = BackupManager.from_settings(load_config())
        result = manager.create_backup(progress=print)
        if result.success:
            manager.restore_backup(result.path)
    """

    def __init__(
        self,
        records: RecordStore,
        preferences: PreferenceStore,
        resolver: AssetResolver,
        output_dir: Path,
        principals: PrincipalResolver | None = None,
        app_version: str = "1.0",
    ) -> None:
        """
        Initialize backup manager.

        Args:
            records: SQLite record store.
            preferences: Preference store for profile, settings and the
                last backup time.
            resolver: Finds and downloads image assets.
            output_dir: Default directory for new archives.
            principals: Resolves the signed-in user. Defaults to the user id
                stored in preferences.
            app_version: Written to the snapshot metadata.
        """
        self.records = records
        self.preferences = preferences
        self.resolver = resolver
        self.output_dir = Path(output_dir)
        self.principals = principals or PreferencePrincipalResolver(preferences)
        self.app_version = app_version
        self.restorer = TransactionalRestorer(records, preferences, self.principals)

    @classmethod
    def from_settings(
        cls, settings: Settings, principals: PrincipalResolver | None = None
    ) -> BackupManager:
        """Build a manager and its stores from configuration."""
        preferences = PreferenceStore(settings.preferences_path)
        client = (
            HttpObjectStorageClient.from_settings(settings)
            if settings.assets.bucket
            else None
        )
        resolver = AssetResolver(
            AssetLocations.from_settings(settings),
            client,
            storage_domain=settings.assets.storage_domain,
        )
        return cls(
            records=RecordStore(settings.database_path),
            preferences=preferences,
            resolver=resolver,
            output_dir=Path(settings.backup.output_dir),
            principals=principals,
            app_version=settings.backup.app_version,
        )

    def dataset(self) -> LocalDataset:
        """Reader over the local stores for the signed-in user."""
        return LocalDataset(
            self.records,
            self.preferences,
            principal_id=self.principals.current_principal(),
            app_version=self.app_version,
        )

    def export_json(self) -> bytes:
        """Encode the local dataset as a bare snapshot document."""
        return dumps(encode(self.dataset()))

    def create_backup(
        self,
        output_dir: Path | None = None,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> BackupResult:
        """
        Create a backup archive.

        Args:
            output_dir: Directory to write the archive to. Defaults to the
                configured backup directory.
            progress: Receives (percent, stage) updates.
            cancel: Checked between stages.

        Returns:
            BackupResult with the archive path or the error.
        """
        cancel = cancel or NEVER_CANCELLED
        reporter = ProgressReporter(progress)
        output_dir = Path(output_dir) if output_dir else self.output_dir

        try:
            reporter.report(0, "Preparing backup...")
            snapshot = encode(self.dataset())
            reporter.report(20, "Backup data serialized")
            cancel.raise_if_cancelled()

            reporter.report(30, "Downloading remote images...")
            downloaded = self.resolver.download_remote_assets(
                snapshot.products, reporter.scaled(30, 50), cancel
            )
            reporter.report(50, "Scanning local images...")
            local = self.resolver.list_local_candidates()
            cancel.raise_if_cancelled()

            reporter.report(60, "Packing archive...")
            # Downloaded photos come first so their product ids win on
            # duplicate entry names
            packed = pack(snapshot, [*downloaded, *local], output_dir)

            self.preferences.namespace(BACKUP_DATA).put(
                LAST_BACKUP_TIME, packed.snapshot.timestamp
            )
            reporter.report(100, "Backup completed")

            logger.info(
                f"Backup created: {packed.path} "
                f"({packed.snapshot.record_count} records, {packed.images_packed} images)"
            )
            return BackupResult(
                success=True,
                path=packed.path,
                info=BackupInfo.from_snapshot(packed.path, packed.snapshot),
                size_bytes=packed.size_bytes,
                images_packed=packed.images_packed,
                images_downloaded=len(downloaded),
                skipped=packed.skipped,
            )

        except OperationCancelledError as e:
            logger.warning(f"Backup cancelled: {e}")
            reporter.fail(str(e))
            return BackupResult(success=False, error=str(e))
        except Exception as e:
            logger.exception("Backup failed")
            reporter.fail(str(e))
            return BackupResult(success=False, error=str(e))

    def restore_backup(
        self,
        backup_path: Path,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> RestoreResult:
        """
        Restore from a backup archive.

        Images are extracted first (0-20%), then the document is applied in
        one transaction (20-95%) and photo references are re-linked to the
        extracted files (95-100%).

        Args:
            backup_path: Path to backup archive.
            progress: Receives (percent, stage) updates.
            cancel: Checked between stages and before commit.

        Returns:
            RestoreResult with details of the restore operation.
        """
        cancel = cancel or NEVER_CANCELLED
        reporter = ProgressReporter(progress)
        backup_path = Path(backup_path)

        try:
            reporter.report(0, "Opening backup...")
            unpacked = unpack(backup_path, self.resolver.locations.destinations())
            reporter.report(20, f"Extracted {unpacked.image_count} images")
            cancel.raise_if_cancelled()
            decoded = decode(
                unpacked.document, principal_id=self.restorer.current_principal()
            )
        except (ArchiveError, SnapshotDecodeError, OperationCancelledError) as e:
            logger.error(f"Restore of {backup_path} failed: {e}")
            reporter.fail(str(e))
            return RestoreResult(success=False, message="Restore failed", error=str(e))

        result = self.restorer.apply(
            decoded.snapshot, reporter.scaled(20, 95), cancel, decoded.errors
        )
        result.images_restored = unpacked.image_count
        result.skipped_records.extend(unpacked.skipped)
        if not result.success:
            reporter.fail(result.error or "Restore failed")
            return result

        reporter.report(95, "Relinking images...")
        try:
            relinked = self.restorer.relink(decoded.snapshot, unpacked.images)
        except StorageError as e:
            logger.warning(f"Image relink failed: {e}")
            result.post_errors.append(f"Relinking images: {e}")
        else:
            result.relinked = relinked.total

        result.message += f", {result.images_restored} images"
        reporter.report(100, "Restore completed")
        return result

    def verify_backup(self, backup_path: Path) -> tuple[bool, list[str]]:
        """
        Verify backup integrity.

        Returns:
            Tuple of (is_valid, list_of_errors)
        """
        return verify(Path(backup_path))

    def get_backup_info(self, backup_path: Path) -> BackupInfo | None:
        """
        Get summary information about a backup without restoring.

        Returns:
            BackupInfo or None if the archive cannot be read.
        """
        backup_path = Path(backup_path)
        try:
            document = read_document(backup_path)
        except ArchiveError as e:
            logger.error(f"Failed to read backup info: {e}")
            return None
        return BackupInfo.from_document(backup_path, document)

    def list_backups(self, output_dir: Path | None = None) -> list[Path]:
        """Archives in the backup directory, newest first."""
        directory = Path(output_dir) if output_dir else self.output_dir
        if not directory.is_dir():
            return []
        return sorted(
            directory.glob(f"{ARCHIVE_PREFIX}-*{ARCHIVE_SUFFIX}"), reverse=True
        )

    def get_backup_status(self) -> BackupStatus:
        """Local record counts, last backup time and existing archives."""
        stats = self.records.get_statistics()
        return BackupStatus(
            last_backup_time=self.preferences.last_backup_time(),
            counts=stats["tables"],
            database_size_bytes=stats["database_size_bytes"],
            output_dir=self.output_dir,
            backups=self.list_backups(),
        )

