"""Google Cloud Storage backed blob store."""

import asyncio
import logging
from datetime import timedelta

from google.cloud import storage

from kvas.storage.base import BlobStore

logger = logging.getLogger(__name__)


class GcsBlobStore(BlobStore):
    """Stores captured logs in a GCS bucket and hands out V4 signed URLs."""

    def __init__(self, project: str, bucket: str, url_ttl_hours: int = 3):
        self._client = storage.Client(project=project)
        self._bucket = self._client.bucket(bucket)
        self._url_ttl = timedelta(hours=url_ttl_hours)

    async def put(self, key: str, data: bytes) -> None:
        blob = self._bucket.blob(key)
        await asyncio.to_thread(
            blob.upload_from_string, data, content_type="text/plain"
        )
        logger.debug(f"uploaded {len(data)} bytes to gs://{self._bucket.name}/{key}")

    async def signed_urls(self, prefix: str) -> list[str]:
        return await asyncio.to_thread(self._signed_urls, prefix)

    def _signed_urls(self, prefix: str) -> list[str]:
        return [
            blob.generate_signed_url(version="v4", expiration=self._url_ttl, method="GET")
            for blob in self._client.list_blobs(self._bucket, prefix=prefix)
        ]

    def close(self) -> None:
        self._client.close()
