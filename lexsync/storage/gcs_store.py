import logging
from datetime import datetime
from typing import List, Optional
from urllib.parse import quote
import httpx
from lexsync.config.settings import BlobStoreConfig
from lexsync.core.errors import BlobNotFound, ConfigurationError, PersistenceFailure
from lexsync.models.document import BlobObject
from lexsync.storage.base import BlobStore

logger = logging.getLogger(__name__)

class GCSBlobStore(BlobStore):
    """
    Implements BlobStore against the Google Cloud Storage JSON API.
    The credential is sent as the `key` query parameter on every call.
    """

    def __init__(self, config: BlobStoreConfig, api_key: str, client: Optional[httpx.Client] = None):
        if not api_key:
            raise ConfigurationError("GCS_API_KEY is required for the gcs blob store")
        self.config = config
        self.api_key = api_key
        self.base = config.api_base.rstrip("/")
        self.client = client or httpx.Client(timeout=config.timeout)

    def _object_url(self, key: str) -> str:
        return f"{self.base}/storage/v1/b/{self.config.bucket}/o/{quote(key, safe='')}"

    def upload(self, data: bytes, key: str, content_type: str = "application/pdf") -> str:
        url = f"{self.base}/upload/storage/v1/b/{self.config.bucket}/o"
        params = {"uploadType": "media", "name": key, "key": self.api_key}
        try:
            response = self.client.post(url, params=params, content=data, headers={"Content-Type": content_type})
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise PersistenceFailure(f"GCS upload failed for {key}: {e}") from e
        logger.info(f"Uploaded {key} ({len(data)} bytes) to gs://{self.config.bucket}")
        return key

    def download(self, key: str) -> bytes:
        return self._get_media(key, headers=None)

    def read_prefix(self, key: str, length: int) -> bytes:
        # Servers that ignore Range still answer 200 with the full body
        data = self._get_media(key, headers={"Range": f"bytes=0-{max(length - 1, 0)}"})
        return data[:length]

    def _get_media(self, key: str, headers: Optional[dict]) -> bytes:
        try:
            response = self.client.get(
                self._object_url(key),
                params={"alt": "media", "key": self.api_key},
                headers=headers
            )
        except httpx.HTTPError as e:
            raise PersistenceFailure(f"GCS download failed for {key}: {e}") from e
        if response.status_code == 404:
            raise BlobNotFound(key)
        if response.status_code >= 400:
            raise PersistenceFailure(f"GCS download failed for {key}: {response.status_code}")
        return response.content

    def list(self, prefix: str = "") -> List[BlobObject]:
        url = f"{self.base}/storage/v1/b/{self.config.bucket}/o"
        params = {"prefix": prefix, "key": self.api_key}
        objects = []
        while True:
            try:
                response = self.client.get(url, params=params)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise PersistenceFailure(f"GCS list failed for prefix '{prefix}': {e}") from e
            data = response.json()
            for item in data.get("items", []):
                updated = item.get("updated") or item.get("timeCreated")
                objects.append(BlobObject(
                    key=item["name"],
                    size=int(item.get("size") or 0),
                    content_type=item.get("contentType") or "application/octet-stream",
                    updated_at=datetime.fromisoformat(updated.replace("Z", "+00:00")) if updated else None
                ))
            token = data.get("nextPageToken")
            if not token:
                break
            params = {**params, "pageToken": token}
        return objects

    def delete(self, key: str) -> None:
        try:
            response = self.client.delete(self._object_url(key), params={"key": self.api_key})
        except httpx.HTTPError as e:
            raise PersistenceFailure(f"GCS delete failed for {key}: {e}") from e
        if response.status_code == 404:
            logger.info(f"Blob {key} already absent")
            return
        if response.status_code >= 400:
            raise PersistenceFailure(f"GCS delete failed for {key}: {response.status_code}")
