"""Tests for user resource operations."""

from __future__ import annotations

import asyncio
import io
import sqlite3
import tempfile
import unittest
import zipfile
from pathlib import Path
from unittest.mock import patch

from gallery import database, users
from gallery.blob_store import BlobStore
from gallery.config import Config
from gallery.utils import DatabaseError, DownloadError, UserNotFound, ValidationError


class TestUsers(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        base = Path(self.temp_dir.name)
        self.config = Config(
            db_path=base / "test.db",
            storage_dir=base / "storage",
            scratch_dir=base / "scratch",
            concurrent_downloads=2,
        )
        self.store = BlobStore(self.config.storage_dir)
        database.init_database(self.config.db_path)

    def tearDown(self) -> None:
        database.close_pool(self.config.db_path)
        self.temp_dir.cleanup()

    def _create(self, params: dict, uploads=()) -> users.User:
        return asyncio.run(
            users.create_user(params, list(uploads), self.store, self.config.db_path))

    def _uploads(self, *items) -> list:
        return [users.Upload(filename=name, data=data) for name, data in items]

    def _blob_files(self) -> list:
        return [path for path in self.config.storage_dir.rglob("*") if path.is_file()]

    def test_create_with_pictures(self) -> None:
        user = self._create(
            {"name": "  Alice  "},
            self._uploads(("a.png", b"AAA"), ("b.png", b"BBB")),
        )
        self.assertEqual(user.name, "Alice")
        self.assertEqual([p.filename for p in user.pictures], ["a.png", "b.png"])
        self.assertEqual(user.pictures[0].content_type, "image/png")
        self.assertEqual(user.pictures[1].byte_size, 3)
        self.assertEqual(len(self._blob_files()), 2)

    def test_unpermitted_params_are_ignored(self) -> None:
        user = self._create({"name": "Alice", "admin": True, "id": 99})
        self.assertNotEqual(user.id, 99)
        self.assertNotIn("admin", user.to_dict())

    def test_blank_name_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._create({"name": "   "}, self._uploads(("a.png", b"AAA")))
        self.assertIn("name", ctx.exception.errors)
        self.assertEqual(database.count_users(self.config.db_path), 0)
        self.assertEqual(self._blob_files(), [])

    def test_missing_and_long_names_are_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self._create({})
        with self.assertRaises(ValidationError):
            self._create({"name": "x" * 256})

    def test_find_missing_user(self) -> None:
        with self.assertRaises(UserNotFound):
            users.find_user(123, self.config.db_path)

    def test_list_users(self) -> None:
        self._create({"name": "Alice"}, self._uploads(("a.png", b"AAA")))
        self._create({"name": "Bob"})
        records = users.list_users(self.config.db_path)
        self.assertEqual([user.name for user in records], ["Alice", "Bob"])
        self.assertEqual(len(records[0].pictures), 1)

    def test_update_name_keeps_pictures(self) -> None:
        user = self._create({"name": "Alice"}, self._uploads(("a.png", b"AAA")))
        updated = asyncio.run(
            users.update_user(user.id, {"name": "Alicia"}, [], self.store, self.config.db_path))
        self.assertEqual(updated.name, "Alicia")
        self.assertEqual([p.filename for p in updated.pictures], ["a.png"])

    def test_update_with_uploads_replaces_pictures(self) -> None:
        user = self._create({"name": "Alice"}, self._uploads(("a.png", b"AAA")))
        old_key = user.pictures[0].blob_key
        updated = asyncio.run(
            users.update_user(
                user.id, {}, self._uploads(("c.png", b"CCC")), self.store, self.config.db_path))
        self.assertEqual(updated.name, "Alice")
        self.assertEqual([p.filename for p in updated.pictures], ["c.png"])
        self.assertFalse(self.store.path_for(old_key).exists())
        self.assertEqual(len(self._blob_files()), 1)

    def _failing_insert(self, fail_on: int):
        original = database._insert_picture
        calls = {"count": 0}

        def _insert(conn, picture_data):
            calls["count"] += 1
            if calls["count"] == fail_on:
                raise sqlite3.OperationalError("disk I/O error")
            return original(conn, picture_data)

        return patch("gallery.database._insert_picture", side_effect=_insert)

    def test_failed_replacement_keeps_previous_pictures(self) -> None:
        user = self._create({"name": "Alice"}, self._uploads(("a.png", b"AAA")))
        with self._failing_insert(fail_on=2):
            with self.assertRaises(DatabaseError):
                asyncio.run(
                    users.update_user(
                        user.id,
                        {"name": "Alicia"},
                        self._uploads(("c.png", b"CCC"), ("d.png", b"DDD")),
                        self.store,
                        self.config.db_path,
                    )
                )
        kept = users.find_user(user.id, self.config.db_path)
        self.assertEqual(kept.name, "Alice")
        self.assertEqual([p.filename for p in kept.pictures], ["a.png"])
        self.assertEqual(len(self._blob_files()), 1)
        data = asyncio.run(users.export_pictures(kept, self.store, self.config))
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            self.assertEqual(archive.read("a.png"), b"AAA")

    def test_failed_create_leaves_nothing_behind(self) -> None:
        with self._failing_insert(fail_on=2):
            with self.assertRaises(DatabaseError):
                self._create(
                    {"name": "Alice"},
                    self._uploads(("a.png", b"AAA"), ("b.png", b"BBB")),
                )
        self.assertEqual(database.count_users(self.config.db_path), 0)
        self.assertEqual(self._blob_files(), [])

    def test_update_invalid_name(self) -> None:
        user = self._create({"name": "Alice"})
        with self.assertRaises(ValidationError):
            asyncio.run(
                users.update_user(user.id, {"name": ""}, [], self.store, self.config.db_path))
        self.assertEqual(users.find_user(user.id, self.config.db_path).name, "Alice")

    def test_update_missing_user(self) -> None:
        with self.assertRaises(UserNotFound):
            asyncio.run(
                users.update_user(5, {"name": "Bob"}, [], self.store, self.config.db_path))

    def test_destroy_purges_blobs(self) -> None:
        user = self._create({"name": "Alice"}, self._uploads(("a.png", b"AAA")))
        users.destroy_user(user.id, self.store, self.config.db_path)
        self.assertEqual(self._blob_files(), [])
        with self.assertRaises(UserNotFound):
            users.destroy_user(user.id, self.store, self.config.db_path)

    def test_export_pictures(self) -> None:
        user = self._create(
            {"name": "Alice"},
            self._uploads(("a.png", b"AAA"), ("b.png", b"BBB")),
        )
        data = asyncio.run(users.export_pictures(user, self.store, self.config))
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            self.assertEqual(archive.namelist(), ["a.png", "b.png"])
            self.assertEqual(archive.read("b.png"), b"BBB")
        self.assertEqual(list(self.config.scratch_dir.iterdir()), [])

    def test_export_with_missing_blob(self) -> None:
        user = self._create({"name": "Alice"}, self._uploads(("a.png", b"AAA")))
        self.store.delete(user.pictures[0].blob_key)
        with self.assertRaises(DownloadError):
            asyncio.run(users.export_pictures(user, self.store, self.config))
        self.assertEqual(list(self.config.scratch_dir.iterdir()), [])


if __name__ == "__main__":
    unittest.main()
