"""Local disk blob store for uploaded pictures."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

import aiofiles

from .utils import DownloadError, atomic_write_bytes, generate_blob_key

logger = logging.getLogger(__name__)


class BlobStore:
    """Content addressed by random keys under a root directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        if len(key) < 5 or not key.isalnum():
            raise DownloadError(f"Invalid blob key: {key!r}")
        return self.root / key[:2] / key[2:4] / key

    async def put(self, data: bytes) -> str:
        """
        Store bytes and return their key.

        Args:
            data: Blob content.

        Returns:
            Newly generated blob key.
        """
        key = generate_blob_key()
        await asyncio.to_thread(atomic_write_bytes, self.path_for(key), data)
        logger.debug("Stored blob %s (%s bytes)", key, len(data))
        return key

    async def download(self, key: str) -> bytes:
        """
        Read a blob fully into memory.

        Args:
            key: Blob key.

        Returns:
            Blob content.

        Raises:
            DownloadError: If the blob is missing or unreadable.
        """
        path = self.path_for(key)
        try:
            async with aiofiles.open(path, "rb") as infile:
                return await infile.read()
        except OSError as exc:
            raise DownloadError(f"Failed to download blob {key}.") from exc

    def delete(self, key: str) -> None:
        """
        Purge a blob; missing blobs are ignored.

        Args:
            key: Blob key.
        """
        try:
            self.path_for(key).unlink()
        except FileNotFoundError:
            logger.debug("Blob %s already gone", key)

    def handle(self, key: str, name: str) -> "StoredFile":
        return StoredFile(name=name, key=key, store=self)


@dataclass(frozen=True)
class StoredFile:
    """Handle to a stored blob with the name it is exported under."""

    name: str
    key: str
    store: BlobStore

    async def download(self) -> bytes:
        return await self.store.download(self.key)
