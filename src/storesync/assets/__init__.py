"""
Image assets: local discovery, remote download and re-linking.

Usage:
    from storesync.assets import AssetLocations, AssetResolver, HttpObjectStorageClient

    resolver = AssetResolver(
        AssetLocations.from_settings(settings),
        HttpObjectStorageClient.from_settings(settings),
    )
    assets = resolver.list_local_candidates()
"""

from storesync.assets.object_storage import (
    AssetDownloadError,
    HttpObjectStorageClient,
    ObjectStorageClient,
    TransientDownloadError,
)
from storesync.assets.resolver import (
    BUSINESS,
    CATEGORIES,
    IMAGE_EXTENSIONS,
    INVENTORY,
    PROFILE,
    AssetLocations,
    AssetResolver,
    ImageDiagnosis,
    LocalAsset,
    ResyncResult,
    classify_by_name,
    is_image_file,
    object_path_from_url,
)

__all__ = [
    "AssetLocations",
    "AssetResolver",
    "LocalAsset",
    "ImageDiagnosis",
    "ResyncResult",
    "ObjectStorageClient",
    "HttpObjectStorageClient",
    "AssetDownloadError",
    "TransientDownloadError",
    "IMAGE_EXTENSIONS",
    "CATEGORIES",
    "INVENTORY",
    "PROFILE",
    "BUSINESS",
    "classify_by_name",
    "is_image_file",
    "object_path_from_url",
]
