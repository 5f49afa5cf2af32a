"""
Remote object storage access.

Product photos uploaded from the app live in cloud object storage and are
referenced by download URLs of the form:

    https://<storage domain>/v0/b/<bucket>/o/<url-encoded object path>?alt=media&token=...

HttpObjectStorageClient downloads objects by path over that REST interface
using a requests session, retrying transient failures with exponential
backoff and writing each file atomically (temp file + rename).
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import quote

import requests

if TYPE_CHECKING:
    from storesync.config.settings import Settings

logger = logging.getLogger(__name__)


class AssetDownloadError(Exception):
    """Raised when an object cannot be downloaded."""

    def __init__(self, message: str, object_path: str | None = None) -> None:
        self.message = message
        self.object_path = object_path
        super().__init__(f"[{object_path}] {message}" if object_path else message)


class TransientDownloadError(AssetDownloadError):
    """
    Raised for failures worth retrying.

    This includes connection errors, timeouts, rate limiting and 5xx responses.
    """

    pass


class ObjectStorageClient(Protocol):
    """Downloads a single object to a local file."""

    def fetch_object(self, object_path: str, dest: Path) -> Path: ...


class HttpObjectStorageClient:
    """
    Object storage client over the storage REST API.

    Example:
        client = HttpObjectStorageClient(
            base_url="https://firebasestorage.googleapis.com/v0/b",
            bucket="my-app.appspot.com",
        )
        client.fetch_object("users/u1/products/p1.jpg", Path("/tmp/p1.jpg"))
    """

    def __init__(
        self,
        base_url: str,
        bucket: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.timeout = timeout
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._session = session

    @classmethod
    def from_settings(cls, settings: Settings) -> HttpObjectStorageClient:
        return cls(
            base_url=settings.assets.storage_base_url,
            bucket=settings.assets.bucket,
            timeout=settings.assets.download_timeout,
            max_retries=settings.assets.max_retries,
        )

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def object_url(self, object_path: str) -> str:
        return f"{self.base_url}/{quote(self.bucket, safe='')}/o/{quote(object_path, safe='')}"

    def fetch_object(self, object_path: str, dest: Path) -> Path:
        """
        Download an object to dest, replacing any existing file.

        Raises:
            AssetDownloadError: If the object cannot be downloaded after all
                retries, or the failure is permanent (e.g. 404).
        """
        if not self.bucket:
            raise AssetDownloadError("No storage bucket configured", object_path)
        return self._with_retry(self._download, object_path, dest)

    def _download(self, object_path: str, dest: Path) -> Path:
        session = self._get_session()
        url = self.object_url(object_path)

        start_time = time.time()
        try:
            response = session.get(
                url, params={"alt": "media"}, timeout=self.timeout, stream=True
            )
        except requests.exceptions.ConnectionError as e:
            raise TransientDownloadError(f"Connection failed: {e}", object_path) from e
        except requests.exceptions.Timeout as e:
            raise TransientDownloadError(f"Request timed out: {e}", object_path) from e
        except requests.exceptions.RequestException as e:
            raise AssetDownloadError(f"Request failed: {e}", object_path) from e

        duration_ms = (time.time() - start_time) * 1000
        logger.debug(f"GET {object_path} -> {response.status_code} ({duration_ms:.0f}ms)")

        try:
            if response.status_code == 429 or response.status_code >= 500:
                raise TransientDownloadError(
                    f"Storage returned HTTP {response.status_code}", object_path
                )
            if response.status_code == 404:
                raise AssetDownloadError("Object not found", object_path)
            if response.status_code in (401, 403):
                raise AssetDownloadError("Access denied", object_path)
            if response.status_code >= 400:
                raise AssetDownloadError(
                    f"Storage returned HTTP {response.status_code}", object_path
                )
            self._write_atomic(response, dest, object_path)
        finally:
            response.close()

        logger.info(f"Downloaded {object_path} -> {dest}")
        return dest

    def _write_atomic(
        self, response: requests.Response, dest: Path, object_path: str
    ) -> None:
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            temp_fd, temp_path = tempfile.mkstemp(suffix=".part", dir=str(dest.parent))
        except OSError as e:
            raise AssetDownloadError(f"Cannot write {dest}: {e}", object_path) from e
        try:
            with os.fdopen(temp_fd, "wb") as f:
                for chunk in response.iter_content(chunk_size=65536):
                    if chunk:
                        f.write(chunk)
            os.replace(temp_path, dest)
        except requests.exceptions.RequestException as e:
            os.unlink(temp_path)
            raise TransientDownloadError(f"Download interrupted: {e}", object_path) from e
        except OSError as e:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise AssetDownloadError(f"Cannot write {dest}: {e}", object_path) from e
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    def _with_retry(self, func: Callable[..., Any], *args: Any) -> Any:
        """
        Execute a function with retry logic and exponential backoff.

        Only TransientDownloadError is retried; permanent failures are raised
        immediately.
        """
        last_exception: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                return func(*args)
            except TransientDownloadError as e:
                last_exception = e
                if attempt < self._max_retries:
                    delay = min(
                        self._retry_base_delay * (2**attempt),
                        self._retry_max_delay,
                    )
                    logger.warning(
                        f"Download failed, retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1}/{self._max_retries}): {e}"
                    )
                    time.sleep(delay)

        if last_exception:
            raise last_exception
        raise AssetDownloadError("Unknown error during retry")

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
