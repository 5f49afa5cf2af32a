"""
Command-line interface for storesync.

Provides commands for archive backups and restores, bare JSON export and
restore, product image maintenance, and remote backups.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

from storesync import __version__
from storesync.config.settings import (
    ConfigurationError,
    Settings,
    get_config_path,
    load_config,
)
from storesync.progress import ProgressCallback
from storesync.storage.preferences import (
    PreferencePrincipalResolver,
    PreferenceStore,
    PrincipalResolver,
    StaticPrincipalResolver,
)

if TYPE_CHECKING:
    from storesync.backup import BackupManager, RestoreResult
    from storesync.sync import SyncOrchestrator

# Set up logging
logger = logging.getLogger(__name__)

# Global verbosity settings (set during main() based on args)
_quiet_mode = False
_verbose_level = 0


def set_output_mode(quiet: bool = False, verbose: int = 0) -> None:
    """
    Set the output mode for the CLI.

    Args:
        quiet: If True, suppress non-essential output.
        verbose: Verbosity level (0=normal, 1+=verbose).
    """
    global _quiet_mode, _verbose_level
    _quiet_mode = quiet
    _verbose_level = verbose


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_verbose(message: str, level: int = 1) -> None:
    """Print a message only if verbosity is high enough."""
    if _verbose_level >= level and not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def progress_printer() -> ProgressCallback:
    """Progress callback that prints each stage once."""
    last: list[str] = []

    def _print(percent: int, stage: str) -> None:
        if last and last[0] == stage:
            return
        last[:] = [stage]
        output(f"  [{percent:3d}%] {stage}")

    return _print


def format_timestamp(millis: int | None) -> str:
    if not millis:
        return "never"
    return datetime.fromtimestamp(millis / 1000).strftime("%Y-%m-%d %H:%M:%S")


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the storesync CLI."""
    parser = argparse.ArgumentParser(
        prog="storesync",
        description="Backup, restore and sync for the local business dataset",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"storesync {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.storesync/config.yaml)",
    )

    parser.add_argument(
        "--user",
        metavar="ID",
        help="Act as this user id instead of the signed-in user",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # info command
    info_parser = subparsers.add_parser(
        "info",
        help="Show configuration and local data status",
        description="Display version, configuration paths, record counts and backups.",
    )
    info_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    info_parser.set_defaults(func=cmd_info)

    # backup command
    backup_parser = subparsers.add_parser(
        "backup",
        help="Create a backup archive",
        description="Create a portable archive of all records, settings and images.",
    )
    backup_parser.add_argument(
        "--output",
        "-o",
        metavar="DIR",
        help="Output directory for the archive (default: configured backup dir)",
    )
    backup_parser.set_defaults(func=cmd_backup)

    # restore command
    restore_parser = subparsers.add_parser(
        "restore",
        help="Restore from a backup archive",
        description="Replace local data with the contents of a backup archive.",
    )
    restore_parser.add_argument(
        "backup_file",
        metavar="FILE",
        help="Path to backup archive (.tar.gz)",
    )
    restore_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompts",
    )
    restore_parser.set_defaults(func=cmd_restore)

    # verify command
    verify_parser = subparsers.add_parser(
        "verify",
        help="Verify a backup archive",
        description="Check the document and image checksums of a backup archive.",
    )
    verify_parser.add_argument(
        "backup_file",
        metavar="FILE",
        help="Path to backup archive (.tar.gz)",
    )
    verify_parser.set_defaults(func=cmd_verify)

    # restore-json command
    restore_json_parser = subparsers.add_parser(
        "restore-json",
        help="Restore from a bare JSON snapshot",
        description="Replace local data with a snapshot document (no images).",
    )
    restore_json_parser.add_argument(
        "json_file",
        metavar="FILE",
        help="Path to snapshot document (.json)",
    )
    restore_json_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompts",
    )
    restore_json_parser.set_defaults(func=cmd_restore_json)

    # export-json command
    export_parser = subparsers.add_parser(
        "export-json",
        help="Export local data as a JSON snapshot",
        description="Write the snapshot document of the local dataset.",
    )
    export_parser.add_argument(
        "--output",
        "-o",
        metavar="FILE",
        help="Output file (default: stdout)",
    )
    export_parser.set_defaults(func=cmd_export_json)

    # images command
    images_parser = subparsers.add_parser(
        "images",
        help="Inspect and repair product images",
        description="Diagnose product photos or re-download remote ones.",
    )
    images_parser.add_argument(
        "action",
        choices=["diagnose", "resync"],
        help="diagnose: report image coverage; resync: download remote photos",
    )
    images_parser.add_argument(
        "--json",
        action="store_true",
        help="Output diagnosis as JSON",
    )
    images_parser.set_defaults(func=cmd_images)

    # cloud-backup command
    cloud_backup_parser = subparsers.add_parser(
        "cloud-backup",
        help="Upload a backup to the remote backup service",
        description="Push a snapshot of the local dataset for the signed-in user.",
    )
    cloud_backup_parser.set_defaults(func=cmd_cloud_backup)

    # cloud-restore command
    cloud_restore_parser = subparsers.add_parser(
        "cloud-restore",
        help="Restore the latest remote backup",
        description="Replace local data with the newest remote backup of the signed-in user.",
    )
    cloud_restore_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompts",
    )
    cloud_restore_parser.set_defaults(func=cmd_cloud_restore)

    return parser


def setup_logging(verbose: int, quiet: bool) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def _load_settings(args: argparse.Namespace) -> Settings:
    config_path = Path(args.config) if args.config else None
    settings = load_config(config_path)
    # -v and -q take precedence over the configured level
    if not args.verbose and not args.quiet:
        logging.getLogger().setLevel(settings.log_level)
    return settings


def _principals(args: argparse.Namespace, preferences: PreferenceStore) -> PrincipalResolver:
    if args.user:
        return StaticPrincipalResolver(args.user)
    return PreferencePrincipalResolver(preferences)


def _build_manager(args: argparse.Namespace, settings: Settings | None = None) -> BackupManager:
    from storesync.backup import BackupManager

    if settings is None:
        settings = _load_settings(args)
    preferences = PreferenceStore(settings.preferences_path)
    return BackupManager.from_settings(settings, _principals(args, preferences))


def _confirm(args: argparse.Namespace, warning: str) -> bool:
    if args.force:
        return True
    output(warning)
    output()
    response = input("Proceed with restore? [y/N]: ").strip().lower()
    if response not in ("y", "yes"):
        output("Restore cancelled.")
        return False
    return True


def _print_restore_result(result: RestoreResult) -> int:
    if not result.success:
        output()
        output_error(f"Restore failed: {result.error}")
        return 1

    output()
    output("Restore completed successfully!")
    output()
    for section, count in result.counts.items():
        output(f"  {section}: {count}")
    if result.images_restored:
        output(f"  Images restored: {result.images_restored}")
        output(f"  Photo references relinked: {result.relinked}")
    if result.skipped_records:
        output()
        output(f"Skipped {len(result.skipped_records)} entries (use -v to list them)")
        for entry in result.skipped_records:
            output_verbose(f"  - {entry}")
    if result.post_errors:
        output()
        output("Some settings could not be restored:")
        for entry in result.post_errors:
            output(f"  - {entry}")
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    """Show configuration and local data status."""
    settings = _load_settings(args)
    manager = _build_manager(args, settings)
    status = manager.get_backup_status()
    principal = manager.principals.current_principal()

    info = {
        "version": __version__,
        "config_path": str(Path(args.config) if args.config else get_config_path()),
        "database_path": str(settings.database_path),
        "preferences_path": str(settings.preferences_path),
        "cache_dir": settings.assets.cache_dir,
        "external_dir": settings.assets.external_dir,
        "remote_endpoint": settings.remote.endpoint or None,
        "user_id": principal,
        **status.to_dict(),
    }

    if args.json:
        output(json.dumps(info, indent=2), force=True)
        return 0

    output(f"storesync {__version__}")
    output("=" * 50)
    output()
    output("Configuration:")
    output(f"  Config file: {info['config_path']}")
    output(f"  Database: {info['database_path']}")
    output(f"  Preferences: {info['preferences_path']}")
    output(f"  Images: {info['external_dir']}")
    output(f"  Remote endpoint: {info['remote_endpoint'] or '(not configured)'}")
    output(f"  Signed-in user: {principal or '(none)'}")
    output()
    output("Local data:")
    for table, count in status.counts.items():
        output(f"  {table}: {count}")
    output(f"  Database size: {status.database_size_bytes:,} bytes")
    output()
    output(f"Last backup: {format_timestamp(status.last_backup_time)}")
    output(f"Backups in {status.output_dir}: {len(status.backups)}")
    for path in status.backups[:5]:
        output(f"  {path.name}")
    return 0


def cmd_backup(args: argparse.Namespace) -> int:
    """Create a backup archive."""
    manager = _build_manager(args)
    output_path = Path(args.output) if args.output else manager.output_dir

    output("storesync Backup")
    output("=" * 50)
    output()
    output(f"Output directory: {output_path}")
    output()

    result = manager.create_backup(output_path, progress=progress_printer())

    if not result.success:
        output()
        output_error(f"Backup failed: {result.error}")
        return 1

    output()
    output("Backup created successfully!")
    output()
    output(f"  File: {result.path}")
    output(f"  Size: {result.size_bytes:,} bytes ({result.size_bytes / 1024 / 1024:.2f} MB)")
    if result.info:
        output(f"  Records: {result.info.record_count}")
    output(f"  Images: {result.images_packed} ({result.images_downloaded} downloaded)")
    if result.skipped:
        output(f"  Skipped images: {len(result.skipped)}")
        for entry in result.skipped:
            output_verbose(f"    - {entry}")
    output()
    output("To restore from this backup, run:")
    output(f"  storesync restore {result.path}")
    return 0


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore from a backup archive."""
    backup_path = Path(args.backup_file)

    if not backup_path.exists():
        output_error(f"Error: Backup file not found: {backup_path}")
        return 1

    manager = _build_manager(args)

    output("storesync Restore")
    output("=" * 50)
    output()
    output(f"Backup file: {backup_path}")
    output()

    info = manager.get_backup_info(backup_path)
    if info:
        output("Backup information:")
        output(f"  Created: {format_timestamp(info.timestamp)}")
        output(f"  Version: {info.version}")
        if info.metadata.get("userEmail"):
            output(f"  User: {info.metadata['userEmail']}")
        output(f"  Records: {info.record_count}")
        output(f"  Images: {info.image_count}")
        output()

    if not _confirm(args, "WARNING: This will replace all local data."):
        return 0

    output("Restoring...")
    result = manager.restore_backup(backup_path, progress=progress_printer())
    return _print_restore_result(result)


def cmd_verify(args: argparse.Namespace) -> int:
    """Verify a backup archive."""
    manager = _build_manager(args)
    backup_path = Path(args.backup_file)

    output(f"Verifying {backup_path}...")
    valid, errors = manager.verify_backup(backup_path)

    if not valid:
        output_error("Backup verification failed:")
        for error in errors:
            output_error(f"  - {error}")
        return 1

    output("Backup verified successfully.")
    return 0


def cmd_restore_json(args: argparse.Namespace) -> int:
    """Restore from a bare JSON snapshot."""
    json_path = Path(args.json_file)
    if not json_path.exists():
        output_error(f"Error: File not found: {json_path}")
        return 1

    manager = _build_manager(args)
    if not _confirm(args, "WARNING: This will replace all local data."):
        return 0

    output("Restoring...")
    result = manager.restorer.restore_from_json(
        json_path.read_bytes(), progress=progress_printer()
    )
    return _print_restore_result(result)


def cmd_export_json(args: argparse.Namespace) -> int:
    """Export local data as a JSON snapshot."""
    manager = _build_manager(args)
    document = manager.export_json()

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(document)
        output(f"Snapshot written to {output_path}")
    else:
        output(document.decode("utf-8"), force=True)
    return 0


def cmd_images(args: argparse.Namespace) -> int:
    """Inspect and repair product images."""
    from storesync.storage import Product

    manager = _build_manager(args)
    resolver = manager.resolver

    if args.action == "diagnose":
        diagnosis = resolver.diagnose_product_images(manager.records.list_records(Product))
        if args.json:
            output(json.dumps(diagnosis.to_dict(), indent=2), force=True)
            return 0
        output("Product image diagnosis")
        output("=" * 50)
        output(f"  Total products: {diagnosis.total_products}")
        output(f"  With images: {diagnosis.with_images}")
        output(f"    Remote: {len(diagnosis.with_remote_images)}")
        output(f"    Local: {len(diagnosis.with_local_images)}")
        output(f"  Without images: {len(diagnosis.without_images)}")
        for label in diagnosis.without_images:
            output(f"    - {label}")
        return 0

    if resolver.client is None:
        output_error("No object storage bucket configured (assets.bucket)")
        return 1
    result = resolver.resync_remote_images(manager.records, progress=progress_printer())
    output(result.message)
    return 1 if result.failed else 0


def _build_orchestrator(args: argparse.Namespace) -> SyncOrchestrator:
    from storesync.backup import TransactionalRestorer
    from storesync.storage import RecordStore
    from storesync.sync import HttpBackupProvider, SyncOrchestrator

    settings = _load_settings(args)
    if not settings.remote.endpoint:
        raise ConfigurationError("remote.endpoint is not configured")

    records = RecordStore(settings.database_path)
    preferences = PreferenceStore(settings.preferences_path)
    principals = _principals(args, preferences)
    provider = HttpBackupProvider(
        settings.remote.endpoint,
        records,
        preferences,
        restorer=TransactionalRestorer(records, preferences, principals),
        timeout=settings.remote.timeout,
        app_version=settings.backup.app_version,
    )
    return SyncOrchestrator(principals, provider, preferences)


def cmd_cloud_backup(args: argparse.Namespace) -> int:
    """Upload a backup to the remote backup service."""
    orchestrator = _build_orchestrator(args)
    output("Uploading backup...")
    result = orchestrator.create_backup(progress=progress_printer())
    if not result.success:
        output_error(f"Remote backup failed: {result.error}")
        return 1
    output(result.value or "Remote backup completed")
    return 0


def cmd_cloud_restore(args: argparse.Namespace) -> int:
    """Restore the latest remote backup."""
    orchestrator = _build_orchestrator(args)
    if not _confirm(args, "WARNING: This will replace all local data."):
        return 0
    output("Restoring...")
    result = orchestrator.restore_latest(progress=progress_printer())
    if not result.success:
        output_error(f"Remote restore failed: {result.error}")
        return 1
    output(result.value or "Restore completed")
    return 0


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the storesync CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Set up logging and output mode
    setup_logging(args.verbose, args.quiet)
    set_output_mode(args.quiet, args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(130)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(2)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
