"""Remote asset storage for processed media (S3 compatible, via MinIO client)."""

from __future__ import annotations

import logging
import mimetypes
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from minio import Minio
from minio.error import S3Error

from config import settings

logger = logging.getLogger(__name__)


@dataclass
class UploadedAsset:
    url: str
    storage_id: str
    resource_type: str


class AssetStore:
    """Uploads local files under ``<folder>/<random>.<ext>`` and serves them from a public base URL."""

    def __init__(self, client: Minio, bucket: str, public_base_url: str):
        self.client = client
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")
        self._bucket_checked = False

    def public_url(self, storage_id: str) -> str:
        return f"{self.public_base_url}/{self.bucket}/{storage_id}"

    def _ensure_bucket(self) -> None:
        if self._bucket_checked:
            return
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)
        self._bucket_checked = True

    def upload(self, file_path: str, folder: str, resource_type: str = "auto") -> UploadedAsset:
        """Upload a local file. Raises RuntimeError with the storage error text on failure."""
        path = Path(file_path)
        storage_id = f"{folder.strip('/')}/{uuid.uuid4().hex}{path.suffix.lower()}"
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        try:
            self._ensure_bucket()
            self.client.fput_object(self.bucket, storage_id, str(path), content_type=content_type)
        except S3Error as exc:
            logger.error("Asset upload of %s failed: %s", path, exc)
            raise RuntimeError(f"Failed to upload file to asset storage: {exc}") from exc
        return UploadedAsset(
            url=self.public_url(storage_id),
            storage_id=storage_id,
            resource_type=resource_type,
        )

    def delete(self, storage_id: str) -> bool:
        """Remove a stored asset. Returns False when the store rejected the delete."""
        try:
            self.client.remove_object(self.bucket, storage_id)
        except S3Error as exc:
            logger.warning("Asset delete of %s failed: %s", storage_id, exc)
            return False
        return True


_asset_store: Optional[AssetStore] = None


def get_asset_store() -> AssetStore:
    """Return the process-wide asset store."""
    global _asset_store
    if _asset_store is None:
        client = Minio(
            settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_SECURE,
        )
        _asset_store = AssetStore(client, settings.MEDIA_BUCKET, settings.MEDIA_PUBLIC_BASE_URL)
    return _asset_store
