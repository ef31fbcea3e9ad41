"""Object storage for snapshot images and other evidence files."""
from abc import ABC, abstractmethod
import asyncio
import os
import logging

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when an object cannot be stored."""


class ObjectStorage(ABC):

    @abstractmethod
    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        """Store ``data`` at ``bucket/path`` and return the path."""

    @abstractmethod
    def public_url(self, bucket: str, path: str) -> str:
        """Return the URL a browser can load the object from."""


class LocalObjectStorage(ObjectStorage):
    """Buckets are sub-directories of the media root, served under /media."""

    def __init__(self, root: str, url_prefix: str = "/media"):
        self.root = os.path.abspath(root)
        self.url_prefix = url_prefix.rstrip("/")

    def _resolve(self, bucket: str, path: str) -> str:
        dest = os.path.abspath(os.path.join(self.root, bucket, path))
        # keep writes inside the bucket directory
        if not dest.startswith(os.path.join(self.root, bucket) + os.sep):
            raise StorageError(f"Invalid object path: {path}")
        return dest

    def _write(self, dest: str, data: bytes):
        os.makedirs(os.path.dirname(dest), exist_ok=True)
        with open(dest, 'wb') as f:
            f.write(data)

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        dest = self._resolve(bucket, path)
        try:
            await asyncio.to_thread(self._write, dest, data)
        except OSError as e:
            raise StorageError(str(e)) from e
        logger.debug("Stored %d bytes (%s) at %s/%s", len(data), content_type, bucket, path)
        return path

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.url_prefix}/{bucket}/{path}"
