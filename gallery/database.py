"""SQLite database operations for users and their pictures."""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from queue import Empty, Full, Queue
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional

from .utils import DatabaseError

logger = logging.getLogger(__name__)


BASE_DIR = Path(__file__).resolve().parents[1]
DEFAULT_DB_PATH = BASE_DIR / "gallery.db"
_POOL_LOCK = Lock()
_POOLS: Dict[Path, "ConnectionPool"] = {}


class ConnectionPool:
    """Simple SQLite connection pool with hard limit."""

    def __init__(self, db_path: Path, maxsize: int = 5) -> None:
        self.db_path = db_path
        self.maxsize = maxsize
        self._queue: Queue[sqlite3.Connection] = Queue(maxsize=maxsize)
        self._active_count: int = 0
        self._count_lock = Lock()

    def acquire(self) -> sqlite3.Connection:
        try:
            return self._queue.get_nowait()
        except Empty:
            with self._count_lock:
                if self._active_count >= self.maxsize:
                    # Block until a connection is returned
                    return self._queue.get(block=True, timeout=30)
                self._active_count += 1
            return self._create_connection()

    def release(self, conn: sqlite3.Connection) -> None:
        try:
            self._queue.put_nowait(conn)
        except Full:
            with self._count_lock:
                self._active_count -= 1
            conn.close()

    def close(self) -> None:
        while True:
            try:
                conn = self._queue.get_nowait()
            except Empty:
                break
            conn.close()
        with self._count_lock:
            self._active_count = 0

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        return conn


def _get_pool(db_path: Path) -> ConnectionPool:
    with _POOL_LOCK:
        if db_path not in _POOLS:
            _POOLS[db_path] = ConnectionPool(db_path)
        return _POOLS[db_path]


def close_pool(db_path: Optional[Path] = None) -> None:
    """
    Close pooled connections for a database file.

    Args:
        db_path: Optional path override for database file.
    """
    path = db_path or DEFAULT_DB_PATH
    with _POOL_LOCK:
        pool = _POOLS.pop(path, None)
    if pool is not None:
        pool.close()


@contextmanager
def get_connection(db_path: Optional[Path] = None) -> Iterator[sqlite3.Connection]:
    """
    Get a pooled database connection with transaction management.

    Args:
        db_path: Optional path override for database file.
    """
    path = db_path or DEFAULT_DB_PATH
    pool = _get_pool(path)
    conn = pool.acquire()
    try:
        conn.execute("BEGIN")
        yield conn
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        raise DatabaseError(str(exc)) from exc
    except BaseException:
        conn.rollback()
        raise
    finally:
        pool.release(conn)


def init_database(db_path: Optional[Path] = None) -> None:
    """
    Initialize the SQLite database schema.

    Args:
        db_path: Optional path override for database file.
    """
    path = db_path or DEFAULT_DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.exists() and not os.access(path, os.R_OK | os.W_OK):
        raise DatabaseError(
            f"Database file exists but is not readable/writable: {path}")

    schema = """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS pictures (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        filename TEXT NOT NULL,
        content_type TEXT,
        byte_size INTEGER NOT NULL,
        blob_key TEXT NOT NULL UNIQUE,
        position INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );

    CREATE INDEX IF NOT EXISTS idx_picture_user ON pictures(user_id, position);
    """
    with get_connection(path) as conn:
        conn.executescript(schema)
    logger.debug("Database ready at %s", path)


def get_user(user_id: int, db_path: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    """
    Retrieve a user row.

    Args:
        user_id: User identifier.
        db_path: Optional path override for database file.

    Returns:
        User dict or None.
    """
    query = "SELECT * FROM users WHERE id = ?"
    with get_connection(db_path) as conn:
        row = conn.execute(query, (user_id,)).fetchone()
    return dict(row) if row else None


def list_users(db_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    """
    List all users ordered by id.

    Args:
        db_path: Optional path override for database file.

    Returns:
        List of user dicts.
    """
    with get_connection(db_path) as conn:
        rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
    return [dict(row) for row in rows]


def count_users(db_path: Optional[Path] = None) -> int:
    with get_connection(db_path) as conn:
        row = conn.execute("SELECT COUNT(*) AS total FROM users").fetchone()
    return int(row["total"])


def update_user(user_id: int, name: str, db_path: Optional[Path] = None) -> bool:
    """
    Update a user's name.

    Args:
        user_id: User identifier.
        name: New name.
        db_path: Optional path override for database file.

    Returns:
        True if a row was updated.
    """
    query = """
    UPDATE users SET name = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?
    """
    with get_connection(db_path) as conn:
        cursor = conn.execute(query, (name, user_id))
        return cursor.rowcount > 0


def delete_user(user_id: int, db_path: Optional[Path] = None) -> bool:
    """
    Delete a user and, by cascade, its pictures.

    Args:
        user_id: User identifier.
        db_path: Optional path override for database file.

    Returns:
        True if a row was deleted.
    """
    with get_connection(db_path) as conn:
        cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        return cursor.rowcount > 0


_INSERT_PICTURE = """
INSERT INTO pictures (
    user_id, filename, content_type, byte_size, blob_key, position
) VALUES (?, ?, ?, ?, ?, ?)
"""


def _insert_picture(conn: sqlite3.Connection, picture_data: Dict[str, Any]) -> int:
    values = (
        picture_data["user_id"],
        picture_data["filename"],
        picture_data.get("content_type"),
        picture_data["byte_size"],
        picture_data["blob_key"],
        picture_data.get("position", 0),
    )
    cursor = conn.execute(_INSERT_PICTURE, values)
    return int(cursor.lastrowid)


def create_user(
    name: str,
    db_path: Optional[Path] = None,
    pictures: Optional[List[Dict[str, Any]]] = None,
) -> int:
    """
    Insert a user and its pictures in one transaction.

    Args:
        name: User name.
        db_path: Optional path override for database file.
        pictures: Picture metadata without user_id.

    Returns:
        Id of the new user.
    """
    with get_connection(db_path) as conn:
        cursor = conn.execute("INSERT INTO users (name) VALUES (?)", (name,))
        user_id = int(cursor.lastrowid)
        for picture in pictures or []:
            _insert_picture(conn, {**picture, "user_id": user_id})
    return user_id


def replace_pictures(
    user_id: int,
    pictures: List[Dict[str, Any]],
    name: Optional[str] = None,
    db_path: Optional[Path] = None,
) -> List[Dict[str, Any]]:
    """
    Swap a user's pictures, and optionally its name, in one transaction.

    Args:
        user_id: User identifier.
        pictures: Replacement picture metadata without user_id.
        name: New name, or None to keep the current one.
        db_path: Optional path override for database file.

    Returns:
        The picture rows that were removed.
    """
    with get_connection(db_path) as conn:
        removed = conn.execute(
            "SELECT * FROM pictures WHERE user_id = ? ORDER BY position, id",
            (user_id,),
        ).fetchall()
        conn.execute("DELETE FROM pictures WHERE user_id = ?", (user_id,))
        for picture in pictures:
            _insert_picture(conn, {**picture, "user_id": user_id})
        if name is None:
            conn.execute(
                "UPDATE users SET updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (user_id,),
            )
        else:
            conn.execute(
                "UPDATE users SET name = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (name, user_id),
            )
    return [dict(row) for row in removed]


def get_pictures(user_id: int, db_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    """
    Retrieve pictures for a user in upload order.

    Args:
        user_id: User identifier.
        db_path: Optional path override for database file.

    Returns:
        List of picture dicts.
    """
    query = "SELECT * FROM pictures WHERE user_id = ? ORDER BY position, id"
    with get_connection(db_path) as conn:
        rows = conn.execute(query, (user_id,)).fetchall()
    return [dict(row) for row in rows]
