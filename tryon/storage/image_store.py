"""Durable image storage for combined garments and try-on results."""

import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from supabase import Client

from tryon.io.image_fetch import DEFAULT_TIMEOUT_SECONDS, fetch_image_bytes


@dataclass
class StoredImage:
    url: str
    key: str


def default_filename(prefix: str = "image", ext: str = ".png") -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{ext}"


class ImageStore(ABC):
    """Persists image bytes and hands back a stable URL."""

    download_timeout: float = DEFAULT_TIMEOUT_SECONDS

    @abstractmethod
    async def upload_buffer(
        self,
        data: bytes,
        folder: str,
        filename: Optional[str] = None,
        content_type: str = "image/png",
    ) -> StoredImage:
        ...

    async def upload_from_url(
        self,
        url: str,
        folder: str,
        filename: Optional[str] = None,
    ) -> StoredImage:
        """Copy a remote (possibly short-lived) image into this store."""
        data = await fetch_image_bytes(url, timeout_seconds=self.download_timeout)
        return await self.upload_buffer(data, folder, filename)


class SupabaseImageStore(ImageStore):
    """Supabase Storage bucket with public URLs."""

    def __init__(self, client: Client, bucket: str, download_timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self._client = client
        self._bucket = bucket
        self.download_timeout = download_timeout

    async def upload_buffer(
        self,
        data: bytes,
        folder: str,
        filename: Optional[str] = None,
        content_type: str = "image/png",
    ) -> StoredImage:
        key = f"{folder.strip('/')}/{filename or default_filename()}"
        bucket = self._client.storage.from_(self._bucket)

        def upload() -> str:
            bucket.upload(key, data, {"content-type": content_type, "upsert": "true"})
            return bucket.get_public_url(key)

        loop = asyncio.get_event_loop()
        url = await loop.run_in_executor(None, upload)
        return StoredImage(url=url, key=key)
