"""
Google Cloud Storage client module.
Handles uploads, public URLs, deletes and fetching stored documents.
"""
import asyncio
import logging
import re
import unicodedata
import uuid
from pathlib import Path
from typing import Optional

import httpx
from google.api_core import exceptions as gcs_exceptions
from google.cloud import storage

from app.config import get_settings, Settings

logger = logging.getLogger(__name__)

DEFAULT_PUBLIC_BASE_URL = "https://storage.googleapis.com"


class StorageError(Exception):
    """Object storage operation failed."""

    SIZE_LIMIT = "size_limit"
    PERMISSION = "permission"
    OTHER = "other"

    def __init__(self, message: str, reason: str = OTHER):
        super().__init__(message)
        self.message = message
        self.reason = reason


def safe_filename(filename: str) -> str:
    """
    ASCII-only object name for a user supplied filename.
    Accented characters are transliterated, everything else unsafe becomes '_'.
    """
    name = Path(filename or "").name
    ascii_name = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    ascii_name = re.sub(r"[^A-Za-z0-9._-]+", "_", ascii_name).strip("._")
    return ascii_name or "document"


def document_object_path(document_id: str, filename: str) -> str:
    return f"documents/{document_id}/{safe_filename(filename)}"


def signed_object_path(document_id: str) -> str:
    return f"documents/{document_id}/signed/{uuid.uuid4()}_signed.pdf"


def validate_object_path(path: str) -> str:
    """Raises ValueError for path traversal attempts or absolute paths."""
    if not path:
        raise ValueError("Storage path cannot be empty")
    if ".." in path:
        raise ValueError("Path traversal not allowed")
    if path.startswith("/"):
        raise ValueError("Absolute paths not allowed")
    return path


def _classify(error: Exception) -> str:
    if isinstance(error, (gcs_exceptions.Forbidden, gcs_exceptions.Unauthorized)):
        return StorageError.PERMISSION
    if getattr(error, "code", None) == 413:
        return StorageError.SIZE_LIMIT
    return StorageError.OTHER


class GCSClient:
    """Google Cloud Storage client wrapper."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client: Optional[storage.Client] = None
        self._bucket: Optional[storage.Bucket] = None

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client()
        return self._client

    @property
    def bucket(self) -> storage.Bucket:
        if self._bucket is None:
            self._bucket = self.client.bucket(self.settings.storage_bucket)
        return self._bucket

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        """
        Upload bytes, retrying transient failures with backoff.
        Size and permission errors are not retried.

        Returns:
            The object path

        Raises:
            StorageError: With reason size_limit, permission or other
        """
        validate_object_path(path)
        if len(data) > self.settings.max_upload_bytes:
            raise StorageError(
                f"File is {len(data)} bytes, limit is {self.settings.max_upload_bytes} bytes",
                reason=StorageError.SIZE_LIMIT,
            )

        attempts = self.settings.retry_attempts
        last_error: Optional[Exception] = None

        for attempt_num in range(1, attempts + 1):
            if attempt_num > 1:
                delay = self.settings.retry_delay(attempt_num)
                logger.info(f"Upload retry {attempt_num}/{attempts} for {path}, waiting {delay}s")
                await asyncio.sleep(delay)

            blob = self.bucket.blob(path)
            try:
                await asyncio.to_thread(
                    blob.upload_from_string,
                    data,
                    content_type=content_type,
                    timeout=self.settings.http_timeout_seconds,
                )
                logger.info(f"Uploaded {len(data)} bytes to {path} on attempt {attempt_num}")
                return path
            except gcs_exceptions.GoogleAPIError as e:
                reason = _classify(e)
                if reason != StorageError.OTHER:
                    raise StorageError(f"Upload rejected: {e}", reason=reason)
                last_error = e
                logger.warning(f"Upload attempt {attempt_num}/{attempts} for {path} failed: {e}")
            except (ConnectionError, TimeoutError) as e:
                last_error = e
                logger.warning(f"Upload attempt {attempt_num}/{attempts} for {path} failed: {e}")

        logger.error(f"Upload of {path} failed after {attempts} attempts. Last error: {last_error}")
        raise StorageError(f"Upload failed: {last_error}", reason=StorageError.OTHER)

    def get_public_url(self, path: str) -> str:
        base = self.settings.storage_public_base_url.rstrip("/")
        if base == DEFAULT_PUBLIC_BASE_URL:
            return self.bucket.blob(path).public_url
        return f"{base}/{path}"

    async def delete(self, path: str) -> bool:
        """Delete an object. Returns False if it did not exist."""
        validate_object_path(path)
        blob = self.bucket.blob(path)
        try:
            await asyncio.to_thread(blob.delete, timeout=self.settings.http_timeout_seconds)
        except gcs_exceptions.NotFound:
            logger.info(f"Delete skipped, {path} does not exist")
            return False
        except gcs_exceptions.GoogleAPIError as e:
            raise StorageError(f"Delete failed: {e}", reason=_classify(e))
        logger.info(f"Deleted {path}")
        return True

    async def fetch(self, url: str) -> bytes:
        """
        Download a stored document by its public URL.

        Raises:
            StorageError: If the URL does not return 200
        """
        try:
            async with httpx.AsyncClient(timeout=self.settings.http_timeout_seconds) as client:
                response = await client.get(url, follow_redirects=True)
        except httpx.HTTPError as e:
            raise StorageError(f"Could not fetch document: {e}")

        if response.status_code != 200:
            raise StorageError(
                f"Could not fetch document: HTTP {response.status_code}",
                reason=StorageError.PERMISSION if response.status_code in (401, 403) else StorageError.OTHER,
            )
        return response.content

    async def verify_public_url(self, url: str) -> bool:
        """Check the URL answers 2xx. Falls back to GET when HEAD is not allowed."""
        try:
            async with httpx.AsyncClient(timeout=self.settings.http_timeout_seconds) as client:
                response = await client.head(url, follow_redirects=True)
                if response.status_code == 405:
                    response = await client.get(url, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.warning(f"Public URL check failed: {e}")
            return False

        ok = 200 <= response.status_code < 300
        if not ok:
            logger.warning(f"Public URL check returned HTTP {response.status_code}")
        return ok
