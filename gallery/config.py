"""Configuration management for the gallery service."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar, Optional

from dotenv import load_dotenv

from .utils import ConfigError

ENV_DB_PATH = "GALLERY_DB_PATH"
ENV_STORAGE_DIR = "GALLERY_STORAGE_DIR"
ENV_SCRATCH_DIR = "GALLERY_SCRATCH_DIR"
ENV_DOWNLOADS = "GALLERY_CONCURRENT_DOWNLOADS"
ENV_MAX_UPLOAD = "GALLERY_MAX_UPLOAD_SIZE"
ENV_LOG_LEVEL = "GALLERY_LOG_LEVEL"
DEFAULT_MAX_UPLOAD_SIZE = 20 * 1024 * 1024
SCRATCH_FOLDER_NAME = "user"


def _base_dir() -> Path:
    return Path(__file__).resolve().parents[1]


def _env_path() -> Path:
    return _base_dir() / ".env"


def default_scratch_dir() -> Path:
    return Path(tempfile.gettempdir()) / SCRATCH_FOLDER_NAME


@dataclass(frozen=True)
class Config:
    """Singleton configuration object."""

    db_path: Path
    storage_dir: Path
    scratch_dir: Path
    concurrent_downloads: int = 5
    max_upload_size: int = DEFAULT_MAX_UPLOAD_SIZE
    log_level: int = logging.INFO

    _instance: ClassVar[Optional["Config"]] = None

    @classmethod
    def get_instance(cls) -> "Config":
        """
        Retrieve a singleton instance of Config.

        Returns:
            Config singleton instance.
        """
        if cls._instance is None:
            cls._instance = load_config()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None


def _parse_int(value: str, name: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer for {name}.") from exc
    if parsed <= 0:
        raise ConfigError(f"{name} must be greater than 0.")
    return parsed


def _parse_log_level(value: str) -> int:
    level = logging.getLevelName(value.upper())
    if not isinstance(level, int):
        raise ConfigError(f"Unknown log level for {ENV_LOG_LEVEL}: {value}")
    return level


def _parse_path(value: str, default: Path) -> Path:
    if not value:
        return default
    return Path(value).expanduser().resolve()


def load_config() -> Config:
    """
    Load and validate configuration from the .env file and environment.

    Returns:
        Config instance.
    """
    env_file = _env_path()
    if env_file.exists():
        load_dotenv(env_file)

    base = _base_dir()
    db_path = os.getenv(ENV_DB_PATH, "").strip()
    storage_dir = os.getenv(ENV_STORAGE_DIR, "").strip()
    scratch_dir = os.getenv(ENV_SCRATCH_DIR, "").strip()
    concurrent_downloads = os.getenv(ENV_DOWNLOADS, "5").strip()
    max_upload = os.getenv(ENV_MAX_UPLOAD, str(DEFAULT_MAX_UPLOAD_SIZE)).strip()
    log_level = os.getenv(ENV_LOG_LEVEL, "INFO").strip()

    return Config(
        db_path=_parse_path(db_path, base / "gallery.db"),
        storage_dir=_parse_path(storage_dir, base / "storage"),
        scratch_dir=_parse_path(scratch_dir, default_scratch_dir()),
        concurrent_downloads=_parse_int(concurrent_downloads, ENV_DOWNLOADS),
        max_upload_size=_parse_int(max_upload, ENV_MAX_UPLOAD),
        log_level=_parse_log_level(log_level),
    )
