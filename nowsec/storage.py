"""Persistent key/value storage of binary blobs, grouped by namespace."""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import closing
from typing import Union

__all__ = [
    "StorageError",
    "KeyNotFoundError",
    "Storage",
    "DEFAULT_NAMESPACE",
    "MAX_KEY_LEN",
]

logger = logging.getLogger("espnow_storage")

DEFAULT_NAMESPACE = "espnow"
MAX_KEY_LEN = 15

BytesLike = Union[bytes, bytearray, memoryview]


class StorageError(Exception):
    """Raised when a storage operation fails or gets invalid arguments."""


class KeyNotFoundError(StorageError, KeyError):
    """Raised when a requested key is not stored."""


def _check_name(name: object, what: str) -> str:
    if not isinstance(name, str) or not name:
        raise StorageError(f"{what} must be a non-empty string")
    if len(name) > MAX_KEY_LEN:
        raise StorageError(f"{what} {name!r} is longer than {MAX_KEY_LEN} characters")
    return name


class Storage:
    """Blobs kept in an SQLite file, each under a key within a namespace."""

    def __init__(
        self, path: str | os.PathLike[str], namespace: str = DEFAULT_NAMESPACE
    ) -> None:
        self.path = os.fspath(path)
        self.namespace = _check_name(namespace, "namespace")
        try:
            with self._connect() as conn:
                conn.execute(
                    "CREATE TABLE IF NOT EXISTS blobs ("
                    " namespace TEXT NOT NULL,"
                    " key TEXT NOT NULL,"
                    " value BLOB NOT NULL,"
                    " PRIMARY KEY (namespace, key))"
                )
        except sqlite3.Error as exc:
            raise StorageError(f"cannot open storage {self.path!r}: {exc}") from exc

    def _connect(self) -> "_Connection":
        return _Connection(self.path)

    def set(self, key: str, value: BytesLike) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        _check_name(key, "key")
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise StorageError("value must be bytes-like")
        blob = bytes(value)
        if not blob:
            raise StorageError("value must not be empty")
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO blobs (namespace, key, value)"
                    " VALUES (?, ?, ?)",
                    (self.namespace, key, blob),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"set value for key {key!r}: {exc}") from exc

    def get(self, key: str, length: int = 0) -> bytes:
        """Load the value of ``key``.

        ``length`` of 0 accepts a value of any size; otherwise it is the
        room the caller has, and a longer stored value is an error.
        """
        _check_name(key, "key")
        if length < 0:
            raise StorageError("length must not be negative")
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT value FROM blobs WHERE namespace = ? AND key = ?",
                    (self.namespace, key),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"get value for key {key!r}: {exc}") from exc

        if row is None:
            logger.debug("Get value for given key, key: %s not found", key)
            raise KeyNotFoundError(key)

        value = bytes(row[0])
        if length and len(value) > length:
            raise StorageError(
                f"value for key {key!r} has {len(value)} bytes, more than {length}"
            )
        return value

    def erase(self, key: str | None = None) -> None:
        """Erase ``key``, or the whole namespace when ``key`` is None.

        Erasing a key that is not stored is not an error.
        """
        if key is not None:
            _check_name(key, "key")
        try:
            with self._connect() as conn:
                if key is None:
                    conn.execute(
                        "DELETE FROM blobs WHERE namespace = ?", (self.namespace,)
                    )
                else:
                    conn.execute(
                        "DELETE FROM blobs WHERE namespace = ? AND key = ?",
                        (self.namespace, key),
                    )
        except sqlite3.Error as exc:
            raise StorageError(f"erase key {key!r}: {exc}") from exc


class _Connection:
    """A connection that commits on success and is always closed."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._conn: sqlite3.Connection | None = None

    def __enter__(self) -> sqlite3.Connection:
        self._conn = sqlite3.connect(self._path)
        return self._conn

    def __exit__(self, exc_type, exc, tb) -> None:
        assert self._conn is not None
        with closing(self._conn):
            if exc_type is None:
                self._conn.commit()
            else:
                self._conn.rollback()