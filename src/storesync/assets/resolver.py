"""
Image asset resolution.

Finds the image files that belong in a backup archive, downloads product
photos that only exist in remote object storage, and reconciles product
photo references with local files.

Directory layout (relative to the configured areas):

    cache_dir/                      # temporary images, classified by name
    external_dir/
        Pictures/                   # camera captures, classified by name
        images/
            inventory/              # product photos
            profile/                # user profile photo
            business/               # business logo
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import unquote

from storesync.assets.object_storage import AssetDownloadError, ObjectStorageClient
from storesync.config.settings import DEFAULT_STORAGE_DOMAIN
from storesync.progress import (
    NEVER_CANCELLED,
    CancellationToken,
    ProgressCallback,
    ProgressReporter,
)
from storesync.storage.models import Product
from storesync.storage.record_store import StorageError

if TYPE_CHECKING:
    from storesync.config.settings import Settings
    from storesync.storage.record_store import RecordStore

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp", "bmp"})

INVENTORY = "inventory"
PROFILE = "profile"
BUSINESS = "business"
CATEGORIES = (INVENTORY, PROFILE, BUSINESS)


@dataclass(frozen=True)
class LocalAsset:
    """
    An image file to include in an archive.

    Attributes:
        category: inventory, profile or business.
        path: Absolute path of the file.
        owner_id: Product id for downloaded product photos, else None.
    """

    category: str
    path: Path
    owner_id: str | None = None

    @property
    def file_name(self) -> str:
        return self.path.name

    @property
    def entry_name(self) -> str:
        return f"images/{self.category}/{self.path.name}"


@dataclass(frozen=True)
class AssetLocations:
    """Local directories that hold image assets."""

    cache_dir: Path
    external_dir: Path

    @classmethod
    def from_settings(cls, settings: Settings) -> AssetLocations:
        return cls(
            cache_dir=Path(settings.assets.cache_dir),
            external_dir=Path(settings.assets.external_dir),
        )

    @property
    def pictures_dir(self) -> Path:
        return self.external_dir / "Pictures"

    def images_dir(self, category: str) -> Path:
        return self.external_dir / "images" / category

    def destinations(self) -> dict[str, Path]:
        """Where each category is extracted to on restore."""
        return {category: self.images_dir(category) for category in CATEGORIES}


@dataclass
class ImageDiagnosis:
    """Image coverage of the product catalogue."""

    total_products: int = 0
    without_images: list[str] = field(default_factory=list)
    with_remote_images: list[str] = field(default_factory=list)
    with_local_images: list[str] = field(default_factory=list)

    @property
    def with_images(self) -> int:
        return len(self.with_remote_images) + len(self.with_local_images)

    def to_dict(self) -> dict[str, object]:
        return {
            "totalProducts": self.total_products,
            "withImages": self.with_images,
            "withoutImages": len(self.without_images),
            "withRemoteImages": len(self.with_remote_images),
            "withLocalImages": len(self.with_local_images),
            "productsWithoutImages": list(self.without_images),
            "productsWithRemoteImages": list(self.with_remote_images),
            "productsWithLocalImages": list(self.with_local_images),
        }


@dataclass
class ResyncResult:
    """Outcome of re-downloading remote product photos."""

    succeeded: int = 0
    failed: int = 0

    @property
    def message(self) -> str:
        return f"Image resync completed: {self.succeeded} succeeded, {self.failed} failed"


def is_image_file(path: Path) -> bool:
    return path.suffix.lower().lstrip(".") in IMAGE_EXTENSIONS


def classify_by_name(name: str) -> str:
    """Category of a generic image, guessed from its file name."""
    if "profile" in name:
        return PROFILE
    if "company_logo" in name or "business" in name:
        return BUSINESS
    return INVENTORY


def is_remote_url(url: str | None) -> bool:
    return url is not None and url.startswith(("http://", "https://"))


def object_path_from_url(url: str) -> str | None:
    """
    Extract the object path from a storage download URL.

    Example:
        >>> object_path_from_url(
        ...     "https://host/v0/b/bucket/o/users%2Fu1%2Fp1.jpg?alt=media"
        ... )
        'users/u1/p1.jpg'

    Returns:
        The decoded path, or None if the URL has no single "/o/" segment.
    """
    parts = url.split("/o/")
    if len(parts) != 2:
        return None
    encoded = parts[1].split("?")[0]
    if not encoded:
        return None
    return unquote(encoded)


def photo_file_name(product_id: str) -> str:
    """
    File name of a downloaded product photo.

    Raises:
        AssetDownloadError: If the product id cannot be used as a file name.
    """
    if (
        not product_id.strip()
        or "/" in product_id
        or "\\" in product_id
        or "\x00" in product_id
        or ".." in product_id
    ):
        raise AssetDownloadError(f"Product id is not a safe file name: {product_id!r}")
    return f"{product_id}.jpg"


def _image_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.is_file() and is_image_file(p))


def _label(product: Product) -> str:
    return f"{product.name} (ID: {product.id})"


class AssetResolver:
    """
    Locates, downloads and re-links image assets.

    Args:
        locations: Local image directories.
        client: Object storage client used for remote photos. Without one,
            remote photos are skipped.
        storage_domain: Host that identifies object storage URLs.
    """

    def __init__(
        self,
        locations: AssetLocations,
        client: ObjectStorageClient | None = None,
        storage_domain: str = DEFAULT_STORAGE_DOMAIN,
    ) -> None:
        self.locations = locations
        self.client = client
        self.storage_domain = storage_domain

    def is_storage_url(self, url: str | None) -> bool:
        return url is not None and is_remote_url(url) and self.storage_domain in url

    def list_local_candidates(self) -> list[LocalAsset]:
        """
        Scan the local image directories.

        Generic folders (cache, Pictures) are classified by file name; the
        dedicated images/<category> folders keep their own category. Results
        are de-duplicated by absolute path and sorted by category then path.
        """
        found: dict[Path, LocalAsset] = {}

        def add(path: Path, category: str) -> None:
            resolved = path.resolve()
            found.setdefault(resolved, LocalAsset(category, resolved))

        for directory in (self.locations.cache_dir, self.locations.pictures_dir):
            for path in _image_files(directory):
                add(path, classify_by_name(path.name))

        for path in _image_files(self.locations.cache_dir / "images" / INVENTORY):
            add(path, INVENTORY)

        for category in CATEGORIES:
            for path in _image_files(self.locations.images_dir(category)):
                add(path, category)

        assets = sorted(
            found.values(), key=lambda a: (CATEGORIES.index(a.category), str(a.path))
        )
        logger.debug(f"Found {len(assets)} local image candidates")
        return assets

    def _remote_products(self, products: Iterable[Product]) -> list[Product]:
        return [p for p in products if self.is_storage_url(p.photo_url)]

    def _download(self, product: Product) -> Path:
        if self.client is None:
            raise AssetDownloadError("No object storage client configured", product.id)
        object_path = object_path_from_url(product.photo_url or "")
        if object_path is None:
            raise AssetDownloadError(f"Unrecognized storage URL: {product.photo_url}")
        dest = self.locations.images_dir(INVENTORY) / photo_file_name(product.id)
        return self.client.fetch_object(object_path, dest)

    def download_remote_assets(
        self,
        products: Iterable[Product],
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[LocalAsset]:
        """
        Download every product photo that lives in object storage.

        Downloads run sequentially. A failed download is logged and skipped;
        only successful downloads are returned.
        """
        cancel = cancel or NEVER_CANCELLED
        reporter = ProgressReporter(progress)
        remote = self._remote_products(products)
        total = len(remote)
        downloaded: list[LocalAsset] = []

        for count, product in enumerate(remote, start=1):
            cancel.raise_if_cancelled()
            try:
                path = self._download(product)
            except (AssetDownloadError, OSError) as e:
                logger.warning(f"Could not download photo of {_label(product)}: {e}")
            else:
                downloaded.append(LocalAsset(INVENTORY, path.resolve(), product.id))
            reporter.report(count * 100 / total, f"Downloaded {count}/{total} images")

        if total:
            logger.info(f"Downloaded {len(downloaded)}/{total} remote product photos")
        return downloaded

    def diagnose_product_images(self, products: Iterable[Product]) -> ImageDiagnosis:
        """Classify products by where their photo lives."""
        diagnosis = ImageDiagnosis()
        for product in products:
            diagnosis.total_products += 1
            url = product.photo_url
            if not url or not url.strip():
                diagnosis.without_images.append(_label(product))
            elif is_remote_url(url):
                diagnosis.with_remote_images.append(_label(product))
            else:
                diagnosis.with_local_images.append(_label(product))
        return diagnosis

    def resync_remote_images(
        self,
        store: RecordStore,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> ResyncResult:
        """
        Download remote product photos and point products at the local copies.

        Returns:
            Counts of products re-linked and of downloads that failed.
        """
        cancel = cancel or NEVER_CANCELLED
        reporter = ProgressReporter(progress)
        reporter.report(0, "Starting image resync...")

        products = store.list_records(Product)
        result = ResyncResult()
        total = len(products)

        for index, product in enumerate(products, start=1):
            cancel.raise_if_cancelled()
            if self.is_storage_url(product.photo_url):
                try:
                    path = self._download(product)
                    store.update_product_photo(product.id, str(path.resolve()))
                except (AssetDownloadError, StorageError, OSError) as e:
                    result.failed += 1
                    logger.warning(f"Could not resync photo of {_label(product)}: {e}")
                else:
                    result.succeeded += 1
                    logger.info(f"Resynced photo of {_label(product)}")
            reporter.report(index * 100 / total, f"Processing {product.name}...")

        reporter.report(100, result.message)
        return result
