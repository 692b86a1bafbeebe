"""User resource operations: validation, persistence and picture export."""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Type, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from . import database
from .archiver import ProgressCallback, export_archive
from .blob_store import BlobStore, StoredFile
from .config import Config
from .models import User
from .utils import UserNotFound, ValidationError, sanitize_filename

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 255
ParamsT = TypeVar("ParamsT", bound=BaseModel)


class UserParams(BaseModel):
    """Whitelisted attributes for creating a user."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=NAME_MAX_LENGTH)


class UserUpdateParams(BaseModel):
    """Whitelisted attributes for updating a user; omitted keys are kept."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    name: Optional[str] = Field(
        default=None, min_length=1, max_length=NAME_MAX_LENGTH)


@dataclass(frozen=True)
class Upload:
    """An uploaded picture received from a client."""

    filename: str
    data: bytes
    content_type: Optional[str] = None


def parse_params(model: Type[ParamsT], params: Mapping[str, Any]) -> ParamsT:
    """
    Validate raw parameters against a params model.

    Raises:
        ValidationError: With a field -> messages map.
    """
    try:
        return model.model_validate(dict(params))
    except pydantic.ValidationError as exc:
        errors: Dict[str, List[str]] = {}
        for error in exc.errors():
            field = ".".join(str(part) for part in error["loc"]) or "base"
            errors.setdefault(field, []).append(error["msg"])
        raise ValidationError(errors) from exc


async def _store_uploads(uploads: Sequence[Upload], store: BlobStore) -> List[str]:
    keys: List[str] = []
    try:
        for upload in uploads:
            keys.append(await store.put(upload.data))
    except BaseException:
        _purge(store, keys)
        raise
    return keys


def _purge(store: BlobStore, keys: Sequence[str]) -> None:
    for key in keys:
        try:
            store.delete(key)
        except OSError:
            logger.warning("Could not purge blob %s", key, exc_info=True)


def _picture_rows(
    uploads: Sequence[Upload], keys: Sequence[str]
) -> List[Dict[str, Any]]:
    rows = []
    for position, (upload, key) in enumerate(zip(uploads, keys)):
        filename = sanitize_filename(upload.filename)
        rows.append(
            {
                "filename": filename,
                "content_type": upload.content_type or mimetypes.guess_type(filename)[0],
                "byte_size": len(upload.data),
                "blob_key": key,
                "position": position,
            }
        )
    return rows


def find_user(user_id: int, db_path: Optional[Path] = None) -> User:
    """
    Load a user with its pictures.

    Raises:
        UserNotFound: If no such user exists.
    """
    row = database.get_user(user_id, db_path)
    if row is None:
        raise UserNotFound(f"User {user_id} not found.")
    return User.from_row(row, database.get_pictures(user_id, db_path))


def list_users(db_path: Optional[Path] = None) -> List[User]:
    return [
        User.from_row(row, database.get_pictures(row["id"], db_path))
        for row in database.list_users(db_path)
    ]


async def create_user(
    params: Mapping[str, Any],
    uploads: Sequence[Upload],
    store: BlobStore,
    db_path: Optional[Path] = None,
) -> User:
    """
    Validate params, store uploads and persist a new user.

    The user row and its picture rows are written in one transaction;
    stored blobs are purged if that transaction fails.

    Args:
        params: Raw request parameters; only whitelisted keys are used.
        uploads: Pictures to attach, in order.
        store: Blob store for picture content.
        db_path: Optional path override for database file.

    Returns:
        The created user.
    """
    validated = parse_params(UserParams, params)
    keys = await _store_uploads(uploads, store)
    try:
        user_id = database.create_user(
            validated.name, db_path, pictures=_picture_rows(uploads, keys))
    except BaseException:
        _purge(store, keys)
        raise
    logger.info("Created user %s with %s picture(s)", user_id, len(keys))
    return find_user(user_id, db_path)


async def update_user(
    user_id: int,
    params: Mapping[str, Any],
    uploads: Sequence[Upload],
    store: BlobStore,
    db_path: Optional[Path] = None,
) -> User:
    """
    Update a user's attributes; supplied uploads replace existing pictures.

    Name and pictures change in one transaction. Old blobs are purged only
    after it commits; new blobs are purged if it fails.

    Args:
        user_id: User identifier.
        params: Raw request parameters; only whitelisted keys are used.
        uploads: Replacement pictures; empty keeps the current ones.
        store: Blob store for picture content.
        db_path: Optional path override for database file.

    Returns:
        The updated user.
    """
    find_user(user_id, db_path)
    validated = parse_params(UserUpdateParams, params)

    if not uploads:
        if validated.name is not None:
            database.update_user(user_id, validated.name, db_path)
        return find_user(user_id, db_path)

    keys = await _store_uploads(uploads, store)
    try:
        removed = database.replace_pictures(
            user_id, _picture_rows(uploads, keys), validated.name, db_path)
    except BaseException:
        _purge(store, keys)
        raise
    _purge(store, [row["blob_key"] for row in removed])
    logger.info(
        "Replaced %s picture(s) of user %s with %s",
        len(removed), user_id, len(keys),
    )
    return find_user(user_id, db_path)


def destroy_user(
    user_id: int, store: BlobStore, db_path: Optional[Path] = None
) -> None:
    """
    Delete a user, its pictures and their blobs.

    Raises:
        UserNotFound: If no such user exists.
    """
    pictures = database.get_pictures(user_id, db_path)
    if not database.delete_user(user_id, db_path):
        raise UserNotFound(f"User {user_id} not found.")
    _purge(store, [row["blob_key"] for row in pictures])
    logger.info("Deleted user %s", user_id)


def picture_handles(user: User, store: BlobStore) -> List[StoredFile]:
    return [store.handle(picture.blob_key, picture.filename) for picture in user.pictures]


async def export_pictures(
    user: User,
    store: BlobStore,
    config: Config,
    progress_callback: Optional[ProgressCallback] = None,
) -> bytes:
    """
    Bundle a user's pictures into a zip archive.

    Args:
        user: User whose pictures are exported.
        store: Blob store holding the pictures.
        config: Provides the scratch directory and download concurrency.
        progress_callback: Optional callback(done, total).

    Returns:
        Zip archive bytes.
    """
    return await export_archive(
        picture_handles(user, store),
        scratch_root=config.scratch_dir,
        max_concurrency=config.concurrent_downloads,
        progress_callback=progress_callback,
    )
