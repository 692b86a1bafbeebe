"""Shared utilities for the gallery service."""

from __future__ import annotations

import logging
import os
import re
import secrets
from pathlib import Path
from typing import Dict, List, Optional


class GalleryError(Exception):
    """Base exception for gallery errors."""


class ConfigError(GalleryError):
    """Raised when configuration is invalid or missing."""


class DatabaseError(GalleryError):
    """Raised when database operations fail."""


class DownloadError(GalleryError):
    """Raised when a stored file cannot be retrieved."""


class ArchiveWriteError(GalleryError):
    """Raised when writing scratch files or packing the zip fails."""


class CleanupError(GalleryError):
    """Raised when scratch teardown fails and nothing else went wrong."""


class UserNotFound(GalleryError):
    """Raised when a user id does not exist."""


class ValidationError(GalleryError):
    """Raised when user parameters are rejected."""

    def __init__(self, errors: Dict[str, List[str]]) -> None:
        self.errors = errors
        details = "; ".join(
            f"{field} {message}"
            for field, messages in errors.items()
            for message in messages
        )
        super().__init__(details or "Invalid parameters.")


LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def setup_logging(log_level: int = logging.INFO) -> None:
    """
    Configure global logging.

    Args:
        log_level: Logging verbosity level.
    """
    logging.basicConfig(level=log_level, format=LOG_FORMAT)


def format_bytes(size: int) -> str:
    """
    Convert bytes to a human-readable string.

    Args:
        size: Size in bytes.

    Returns:
        Human-readable size string.
    """
    if size < 0:
        raise ValueError("Size must be non-negative.")

    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    value = float(size)
    for unit in units:
        if value < 1024 or unit == units[-1]:
            return f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} PB"


def generate_blob_key() -> str:
    """
    Generate a random blob key.

    Returns:
        32 character hex string.
    """
    return secrets.token_hex(16)


def sanitize_filename(name: Optional[str]) -> str:
    """
    Reduce a client supplied name to a safe single path component.

    Directory parts are dropped, control characters removed, and names
    that would resolve to the parent or current directory replaced.

    Args:
        name: Original filename.

    Returns:
        Sanitized filename.
    """
    if not name:
        return "file"
    candidate = str(name).replace("\\", "/").split("/")[-1]
    candidate = _CONTROL_CHARS.sub("", candidate).strip()
    if candidate in ("", ".", ".."):
        return "file"
    return candidate


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """
    Write bytes atomically to a file.

    Args:
        path: Destination path.
        data: Data to write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(temp_path, "wb") as file_handle:
            file_handle.write(data)
            file_handle.flush()
            os.fsync(file_handle.fileno())
        temp_path.replace(path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise
