"""Tests for configuration loading."""

from __future__ import annotations

import logging
import os
import unittest
from pathlib import Path
from unittest.mock import patch

from gallery import config as config_module
from gallery.config import Config, load_config
from gallery.utils import ConfigError


class TestLoadConfig(unittest.TestCase):
    def setUp(self) -> None:
        env_patch = patch.object(
            config_module, "_env_path", return_value=Path("/nonexistent/.env"))
        env_patch.start()
        self.addCleanup(env_patch.stop)

    def _load(self, **env: str) -> Config:
        with patch.dict(os.environ, env, clear=True):
            return load_config()

    def test_defaults(self) -> None:
        config = self._load()
        self.assertEqual(config.concurrent_downloads, 5)
        self.assertEqual(config.max_upload_size, 20 * 1024 * 1024)
        self.assertEqual(config.log_level, logging.INFO)
        self.assertEqual(config.db_path.name, "gallery.db")
        self.assertEqual(config.scratch_dir, config_module.default_scratch_dir())
        self.assertEqual(config.scratch_dir.name, "user")

    def test_overrides(self) -> None:
        config = self._load(
            GALLERY_DB_PATH="/srv/gallery/app.db",
            GALLERY_SCRATCH_DIR="/srv/scratch",
            GALLERY_CONCURRENT_DOWNLOADS="2",
            GALLERY_LOG_LEVEL="debug",
        )
        self.assertEqual(config.db_path, Path("/srv/gallery/app.db"))
        self.assertEqual(config.scratch_dir, Path("/srv/scratch"))
        self.assertEqual(config.concurrent_downloads, 2)
        self.assertEqual(config.log_level, logging.DEBUG)

    def test_invalid_integer(self) -> None:
        with self.assertRaises(ConfigError):
            self._load(GALLERY_CONCURRENT_DOWNLOADS="many")
        with self.assertRaises(ConfigError):
            self._load(GALLERY_MAX_UPLOAD_SIZE="0")

    def test_invalid_log_level(self) -> None:
        with self.assertRaises(ConfigError):
            self._load(GALLERY_LOG_LEVEL="chatty")

    def test_get_instance_is_cached(self) -> None:
        Config.reset_instance()
        self.addCleanup(Config.reset_instance)
        with patch.dict(os.environ, {}, clear=True):
            first = Config.get_instance()
            second = Config.get_instance()
        self.assertIs(first, second)


if __name__ == "__main__":
    unittest.main()
