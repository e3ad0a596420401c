"""Local-filesystem image store for development.

Files are written under ``base_dir/<folder>/<filename>`` and served by the
``/files`` route in ``tryon/api/files.py``.
"""

import asyncio
import os
import tempfile
from typing import Optional

from tryon.io.image_fetch import DEFAULT_TIMEOUT_SECONDS
from tryon.storage.image_store import ImageStore, StoredImage, default_filename

FILES_ROUTE = "/files"


class LocalImageStore(ImageStore):

    def __init__(
        self,
        base_dir: Optional[str] = None,
        public_base_url: str = "http://localhost:8000",
        download_timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        if base_dir:
            self._base_dir = base_dir
        else:
            self._base_dir = os.path.join(tempfile.gettempdir(), "tryon_results")
        os.makedirs(self._base_dir, exist_ok=True)
        self._public_base_url = public_base_url.rstrip("/")
        self.download_timeout = download_timeout

    @property
    def base_dir(self) -> str:
        return self._base_dir

    def get_path(self, key: str) -> str:
        """Filesystem path for a stored key, confined to the base directory."""
        path = os.path.normpath(os.path.join(self._base_dir, key))
        if not path.startswith(os.path.normpath(self._base_dir) + os.sep):
            raise ValueError(f"Invalid storage key: {key}")
        return path

    def file_exists(self, key: str) -> bool:
        return os.path.exists(self.get_path(key))

    async def upload_buffer(
        self,
        data: bytes,
        folder: str,
        filename: Optional[str] = None,
        content_type: str = "image/png",
    ) -> StoredImage:
        key = f"{folder.strip('/')}/{os.path.basename(filename or default_filename())}"
        path = self.get_path(key)

        def write():
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as dst:
                dst.write(data)

        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, write)
        return StoredImage(url=f"{self._public_base_url}{FILES_ROUTE}/{key}", key=key)
