"""Archive export: bundle stored files into an in-memory zip."""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Protocol, Sequence

import aiofiles

from .config import default_scratch_dir
from .utils import (
    ArchiveWriteError,
    CleanupError,
    DownloadError,
    format_bytes,
    sanitize_filename,
)


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
SCRATCH_PREFIX = "export_"


class FileHandle(Protocol):
    """Anything with a name and an awaitable download."""

    name: str

    async def download(self) -> bytes:
        ...


def _create_scratch_dir(scratch_root: Path) -> Path:
    try:
        scratch_root.mkdir(parents=True, exist_ok=True, mode=0o700)
        return Path(tempfile.mkdtemp(prefix=SCRATCH_PREFIX, dir=scratch_root))
    except OSError as exc:
        raise ArchiveWriteError(
            f"Could not create scratch area under {scratch_root}.") from exc


def _remove_scratch_dir(scratch_dir: Path, primary_failed: bool) -> None:
    try:
        shutil.rmtree(scratch_dir)
    except OSError as exc:
        if primary_failed:
            logger.error(
                "Failed to remove scratch area %s", scratch_dir, exc_info=True)
            return
        raise CleanupError(
            f"Failed to remove scratch area {scratch_dir}.") from exc


async def save_file(handle: FileHandle, slot_dir: Path) -> Path:
    """
    Download one handle into its own slot directory.

    Args:
        handle: File handle to download.
        slot_dir: Directory reserved for this handle; created here.

    Returns:
        Path of the written scratch file.
    """
    name = sanitize_filename(handle.name)
    try:
        data = await handle.download()
    except DownloadError:
        raise
    except Exception as exc:
        raise DownloadError(f"Failed to download {name}.") from exc

    path = slot_dir / name
    try:
        slot_dir.mkdir()
        async with aiofiles.open(path, "wb") as outfile:
            await outfile.write(data)
    except OSError as exc:
        raise ArchiveWriteError(f"Failed to write scratch file {name}.") from exc
    logger.debug("Saved %s (%s)", name, format_bytes(len(data)))
    return path


async def save_files(
    handles: Sequence[FileHandle],
    scratch_dir: Path,
    max_concurrency: int = 5,
    progress_callback: Optional[ProgressCallback] = None,
) -> List[Path]:
    """
    Download handles concurrently with a semaphore.

    If any download fails, the remaining ones are cancelled and awaited
    before the error propagates.

    Args:
        handles: File handles to download.
        scratch_dir: Per-operation scratch directory.
        max_concurrency: Max concurrent downloads.
        progress_callback: Optional callback(done, total).

    Returns:
        Scratch file paths in input order.
    """
    semaphore = asyncio.Semaphore(max_concurrency)
    total = len(handles)
    done = 0

    async def _download(index: int, handle: FileHandle) -> Path:
        nonlocal done
        async with semaphore:
            path = await save_file(handle, scratch_dir / f"{index:04d}")
        done += 1
        if progress_callback:
            progress_callback(done, total)
        return path

    tasks = [
        asyncio.create_task(_download(index, handle))
        for index, handle in enumerate(handles)
    ]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def build_zip(paths: Sequence[Path]) -> bytes:
    """
    Pack files into a zip and return its bytes.

    The container lives in an anonymous temporary file that is closed
    before returning. Entries are named by base filename, in order.

    Args:
        paths: Files to add.

    Returns:
        Zip content.
    """
    try:
        with tempfile.TemporaryFile(suffix=".zip") as temp_file:
            with zipfile.ZipFile(
                temp_file, "w", compression=zipfile.ZIP_DEFLATED
            ) as archive:
                for path in paths:
                    archive.write(path, arcname=path.name)
            temp_file.seek(0)
            return temp_file.read()
    except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
        raise ArchiveWriteError(f"Failed to build zip archive: {exc}") from exc


async def export_archive(
    handles: Iterable[FileHandle],
    scratch_root: Optional[Path] = None,
    max_concurrency: int = 5,
    progress_callback: Optional[ProgressCallback] = None,
) -> bytes:
    """
    Download files to a private scratch area and return them as a zip.

    The scratch area is removed on every exit path, including errors and
    cancellation.

    Args:
        handles: File handles in the order their entries should appear.
        scratch_root: Parent scratch directory; defaults to <tmp>/user.
        max_concurrency: Max concurrent downloads.
        progress_callback: Optional callback(done, total).

    Returns:
        Zip archive bytes.

    Raises:
        DownloadError: If a file could not be retrieved.
        ArchiveWriteError: If scratch files or the zip could not be written.
        CleanupError: If teardown failed after an otherwise successful export.
    """
    if max_concurrency <= 0:
        raise ValueError("max_concurrency must be greater than 0.")
    items = list(handles)
    root = Path(scratch_root) if scratch_root else default_scratch_dir()
    scratch_dir = _create_scratch_dir(root)
    logger.info("Exporting %s file(s) via %s", len(items), scratch_dir)

    failed = True
    try:
        paths = await save_files(
            items,
            scratch_dir,
            max_concurrency=max_concurrency,
            progress_callback=progress_callback,
        )
        data = await asyncio.to_thread(build_zip, paths)
        failed = False
    finally:
        _remove_scratch_dir(scratch_dir, primary_failed=failed)

    logger.info("Export finished: %s entries, %s", len(items), format_bytes(len(data)))
    return data
