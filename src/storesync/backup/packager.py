"""
Archive packaging for snapshot backups.

A backup archive is a gzip-compressed tar file containing:

    backup_data.json                    # snapshot document
    images/inventory/<file>             # product photos
    images/profile/<file>               # user profile photo
    images/business/<file>              # business logo

The document is always written first and records a SHA-256 checksum for
every image entry under "assetChecksums". Unpacking does not rely on entry
order: entries are streamed into a private working directory, and images are
only checked and moved into place once the whole archive has been read.
"""

from __future__ import annotations

import hashlib
import io
import json
import logging
import os
import shutil
import tarfile
import tempfile
import zlib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import IO, Any

from storesync.assets.resolver import CATEGORIES, LocalAsset
from storesync.snapshot.codec import Snapshot, dumps, with_asset_info

logger = logging.getLogger(__name__)

DOCUMENT_NAME = "backup_data.json"
ARCHIVE_PREFIX = "storesync-backup"
ARCHIVE_SUFFIX = ".tar.gz"


class ArchiveError(Exception):
    """Raised when an archive cannot be written or read."""

    pass


class ArchiveNotFoundError(ArchiveError):
    """Raised when the archive file does not exist."""

    pass


@dataclass
class PackResult:
    """Result of packing an archive."""

    path: Path
    snapshot: Snapshot
    images_packed: int = 0
    skipped: list[str] = field(default_factory=list)
    size_bytes: int = 0


@dataclass
class UnpackedArchive:
    """
    Contents of an unpacked archive.

    Attributes:
        document: Parsed snapshot document.
        images: Category -> absolute paths of the extracted images.
        skipped: Entry names that were not extracted, with the reason.
    """

    document: dict[str, Any]
    images: dict[str, list[Path]] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def image_count(self) -> int:
        return sum(len(paths) for paths in self.images.values())


def compute_checksum(path: Path) -> str:
    """Compute SHA-256 checksum of a file."""
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(8192):
            hasher.update(chunk)
    return hasher.hexdigest()


def _stream_checksum(stream: IO[bytes]) -> str:
    hasher = hashlib.sha256()
    while chunk := stream.read(8192):
        hasher.update(chunk)
    return hasher.hexdigest()


def parse_image_entry(name: str) -> tuple[str, str] | None:
    """
    Split an image entry name into (category, file name).

    Returns None for anything but images/<known category>/<plain file name>,
    which rules out absolute paths and parent-directory references.
    """
    if "\\" in name or name.startswith("/"):
        return None
    parts = PurePosixPath(name).parts
    if len(parts) != 3 or parts[0] != "images":
        return None
    category, file_name = parts[1], parts[2]
    if category not in CATEGORIES or file_name in ("", ".", ".."):
        return None
    return category, file_name


def archive_name(timestamp: int) -> str:
    return f"{ARCHIVE_PREFIX}-{timestamp}{ARCHIVE_SUFFIX}"


def pack(
    snapshot: Snapshot,
    assets: Iterable[LocalAsset],
    output_dir: Path,
) -> PackResult:
    """
    Write a snapshot and its images to a new archive in output_dir.

    Downloaded product photos (assets with an owner_id) override the
    productPhotos entries derived from local photo paths. Missing files and
    duplicate entry names are skipped with a warning.

    Raises:
        ArchiveError: If the archive cannot be written.
    """
    output_dir = Path(output_dir)
    entries: dict[str, LocalAsset] = {}
    skipped: list[str] = []

    for asset in assets:
        entry = asset.entry_name
        if asset.category not in CATEGORIES:
            logger.warning(f"Skipping asset with unknown category: {asset.path}")
            skipped.append(f"{entry}: unknown category")
            continue
        if not asset.path.is_file():
            logger.warning(f"Skipping missing asset: {asset.path}")
            skipped.append(f"{entry}: file not found")
            continue
        if entry in entries:
            logger.warning(f"Skipping duplicate archive entry: {entry}")
            skipped.append(f"{entry}: duplicate entry")
            continue
        entries[entry] = asset

    product_photos = dict(snapshot.product_photos)
    checksums: dict[str, str] = {}
    for entry, asset in entries.items():
        checksums[entry] = compute_checksum(asset.path)
        if asset.owner_id:
            product_photos[asset.owner_id] = asset.file_name

    snapshot = with_asset_info(snapshot, product_photos, checksums)
    document = dumps(snapshot)

    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ArchiveError(f"Cannot create output directory {output_dir}: {e}") from e

    backup_path = output_dir / archive_name(snapshot.timestamp)
    temp_fd, temp_path = tempfile.mkstemp(suffix=".tmp", dir=str(output_dir))
    try:
        with os.fdopen(temp_fd, "wb") as raw, tarfile.open(fileobj=raw, mode="w:gz") as tar:
            tarinfo = tarfile.TarInfo(name=DOCUMENT_NAME)
            tarinfo.size = len(document)
            tarinfo.mtime = snapshot.timestamp // 1000
            tar.addfile(tarinfo, io.BytesIO(document))

            for entry, asset in entries.items():
                tar.add(asset.path, arcname=entry, recursive=False)
        os.replace(temp_path, backup_path)
    except (OSError, tarfile.TarError) as e:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise ArchiveError(f"Failed to write archive: {e}") from e

    size_bytes = backup_path.stat().st_size
    logger.info(
        f"Archive written: {backup_path} ({len(entries)} images, {size_bytes:,} bytes)"
    )
    return PackResult(
        path=backup_path,
        snapshot=snapshot,
        images_packed=len(entries),
        skipped=skipped,
        size_bytes=size_bytes,
    )


def _load_document(data: bytes) -> dict[str, Any]:
    try:
        document = json.loads(data.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ArchiveError(f"Unreadable {DOCUMENT_NAME}: {e}") from e
    if not isinstance(document, dict):
        raise ArchiveError(f"Unreadable {DOCUMENT_NAME}: root is not an object")
    return document


def unpack(archive_path: Path, destinations: Mapping[str, Path]) -> UnpackedArchive:
    """
    Extract an archive.

    Images are verified against the checksums recorded in the document and
    moved into destinations[category], overwriting files of the same name.
    A corrupt or unsafe image entry is skipped; the rest of the archive is
    still extracted.

    Raises:
        ArchiveNotFoundError: If archive_path does not exist.
        ArchiveError: If the archive or its document cannot be read.
    """
    archive_path = Path(archive_path)
    if not archive_path.is_file():
        raise ArchiveNotFoundError(f"Backup file not found: {archive_path}")

    work_dir = Path(tempfile.mkdtemp(prefix="storesync-unpack-"))
    try:
        raw_document: bytes | None = None
        extracted: dict[str, tuple[str, Path]] = {}
        skipped: list[str] = []

        try:
            with tarfile.open(archive_path, "r|gz") as tar:
                for member in tar:
                    if member.isdir():
                        continue
                    if member.name == DOCUMENT_NAME and member.isfile():
                        stream = tar.extractfile(member)
                        if stream is not None:
                            raw_document = stream.read()
                        continue

                    parsed = parse_image_entry(member.name)
                    if parsed is None or not member.isfile():
                        logger.warning(f"Skipping unexpected archive entry: {member.name}")
                        skipped.append(f"{member.name}: unexpected entry")
                        continue

                    category, file_name = parsed
                    stream = tar.extractfile(member)
                    if stream is None:
                        skipped.append(f"{member.name}: unreadable")
                        continue
                    target = work_dir / category / file_name
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with open(target, "wb") as out:
                        shutil.copyfileobj(stream, out)
                    extracted[member.name] = (category, target)
        except (tarfile.TarError, EOFError, zlib.error) as e:
            raise ArchiveError(f"Unreadable archive {archive_path}: {e}") from e
        except OSError as e:
            raise ArchiveError(f"Failed to extract {archive_path}: {e}") from e

        if raw_document is None:
            raise ArchiveError(f"{DOCUMENT_NAME} not found in archive")
        document = _load_document(raw_document)

        checksums = document.get("assetChecksums")
        if not isinstance(checksums, dict):
            checksums = {}

        images: dict[str, list[Path]] = {}
        for entry, (category, source) in sorted(extracted.items()):
            expected = checksums.get(entry)
            if isinstance(expected, str) and compute_checksum(source) != expected:
                logger.warning(f"Checksum mismatch, skipping {entry}")
                skipped.append(f"{entry}: checksum mismatch")
                continue

            dest_dir = Path(destinations[category])
            try:
                dest_dir.mkdir(parents=True, exist_ok=True)
                dest = dest_dir / source.name
                shutil.move(str(source), str(dest))
            except OSError as e:
                logger.warning(f"Could not restore image {entry}: {e}")
                skipped.append(f"{entry}: {e}")
                continue
            images.setdefault(category, []).append(dest.resolve())

        unpacked = UnpackedArchive(document=document, images=images, skipped=skipped)
        logger.info(
            f"Unpacked {archive_path}: {unpacked.image_count} images, "
            f"{len(skipped)} skipped"
        )
        return unpacked
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)


def read_document(archive_path: Path) -> dict[str, Any]:
    """
    Read the snapshot document without extracting images.

    Raises:
        ArchiveNotFoundError: If archive_path does not exist.
        ArchiveError: If the archive or its document cannot be read.
    """
    archive_path = Path(archive_path)
    if not archive_path.is_file():
        raise ArchiveNotFoundError(f"Backup file not found: {archive_path}")
    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            try:
                stream = tar.extractfile(DOCUMENT_NAME)
            except KeyError as e:
                raise ArchiveError(f"{DOCUMENT_NAME} not found in archive") from e
            if stream is None:
                raise ArchiveError(f"Could not read {DOCUMENT_NAME}")
            data = stream.read()
    except (tarfile.TarError, EOFError, zlib.error, OSError) as e:
        raise ArchiveError(f"Unreadable archive {archive_path}: {e}") from e
    return _load_document(data)


def verify(archive_path: Path) -> tuple[bool, list[str]]:
    """
    Verify archive integrity.

    Checks that the document is present and readable and that every image
    listed in assetChecksums exists with a matching checksum.

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    archive_path = Path(archive_path)
    errors: list[str] = []

    if not archive_path.exists():
        return False, [f"Backup file not found: {archive_path}"]

    if not tarfile.is_tarfile(archive_path):
        return False, [f"Not a valid tar archive: {archive_path}"]

    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            try:
                stream = tar.extractfile(DOCUMENT_NAME)
            except KeyError:
                return False, [f"{DOCUMENT_NAME} not found in archive"]
            if stream is None:
                return False, [f"Could not read {DOCUMENT_NAME}"]
            try:
                document = _load_document(stream.read())
            except ArchiveError as e:
                return False, [str(e)]

            checksums = document.get("assetChecksums") or {}
            if not isinstance(checksums, dict):
                return False, ["assetChecksums is not an object"]

            for entry, expected_hash in sorted(checksums.items()):
                try:
                    file_obj = tar.extractfile(entry)
                except KeyError:
                    errors.append(f"File not found in archive: {entry}")
                    continue
                if file_obj is None:
                    errors.append(f"Could not read file: {entry}")
                    continue
                actual_hash = _stream_checksum(file_obj)
                if actual_hash != expected_hash:
                    errors.append(
                        f"Checksum mismatch for {entry}: "
                        f"expected {str(expected_hash)[:16]}..., "
                        f"got {actual_hash[:16]}..."
                    )
    except (tarfile.TarError, EOFError, zlib.error, OSError) as e:
        return False, [f"Verification error: {e}"]

    if errors:
        return False, errors
    return True, []
