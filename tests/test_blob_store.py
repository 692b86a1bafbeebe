"""Tests for the local blob store."""

from __future__ import annotations

import asyncio
import tempfile
import unittest
from pathlib import Path

from gallery.blob_store import BlobStore
from gallery.utils import DownloadError


class TestBlobStore(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.store = BlobStore(Path(self.temp_dir.name) / "storage")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_put_and_download(self) -> None:
        key = asyncio.run(self.store.put(b"picture"))
        self.assertTrue(self.store.path_for(key).is_file())
        self.assertEqual(asyncio.run(self.store.download(key)), b"picture")

    def test_handle_downloads_blob(self) -> None:
        key = asyncio.run(self.store.put(b"AAA"))
        handle = self.store.handle(key, "a.png")
        self.assertEqual(handle.name, "a.png")
        self.assertEqual(asyncio.run(handle.download()), b"AAA")

    def test_download_missing_blob(self) -> None:
        with self.assertRaises(DownloadError):
            asyncio.run(self.store.download("0123456789abcdef"))

    def test_invalid_key(self) -> None:
        with self.assertRaises(DownloadError):
            self.store.path_for("../../etc")

    def test_delete_is_idempotent(self) -> None:
        key = asyncio.run(self.store.put(b"x"))
        self.store.delete(key)
        self.assertFalse(self.store.path_for(key).exists())
        self.store.delete(key)


if __name__ == "__main__":
    unittest.main()
