# database.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
The place's database.

A small JSON key-value store backed by SQLite in <place>/.db/place.sqlite3.
Route handlers reach it as `request.state.db`. It is opened lazily, on first
use, unless the .db folder already exists when the server starts, in which
case bootstrap_database() opens it right away.
"""

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, List, Optional

from .errors import ConfigurationError

DATABASE_FILE_NAME = "place.sqlite3"


class Database:
    def __init__(self, directory: Path):
        self.directory = directory
        self.path = directory / DATABASE_FILE_NAME
        directory.mkdir(parents=True, exist_ok=True)
        # Handlers may run in the threadpool.
        self._connection = sqlite3.connect(str(self.path), check_same_thread=False)
        self._lock = threading.Lock()
        with self._lock, self._connection:
            self._connection.execute(
                "CREATE TABLE IF NOT EXISTS entries (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
            )
        logging.info("💾 Opened database at %s", self.path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            row = self._connection.execute("SELECT value FROM entries WHERE key = ?", (key,)).fetchone()
        return json.loads(row[0]) if row else default

    def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        with self._lock, self._connection:
            self._connection.execute(
                "INSERT INTO entries (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, encoded),
            )

    def delete(self, key: str) -> bool:
        with self._lock, self._connection:
            cursor = self._connection.execute("DELETE FROM entries WHERE key = ?", (key,))
        return cursor.rowcount > 0

    def keys(self) -> List[str]:
        with self._lock:
            rows = self._connection.execute("SELECT key FROM entries ORDER BY key").fetchall()
        return [row[0] for row in rows]

    def close(self) -> None:
        with self._lock:
            self._connection.close()
        logging.info("💾 Closed database at %s", self.path)


class LazyDatabase:
    """Opens the Database the first time something touches it."""

    def __init__(self, directory: Path):
        self.directory = directory
        self._database: Optional[Database] = None

    @property
    def is_open(self) -> bool:
        return self._database is not None

    def open(self) -> Database:
        if self._database is None:
            self._database = Database(self.directory)
        return self._database

    def get(self, key: str, default: Any = None) -> Any:
        return self.open().get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.open().set(key, value)

    def delete(self, key: str) -> bool:
        return self.open().delete(key)

    def keys(self) -> List[str]:
        return self.open().keys()

    def close(self) -> None:
        """Close the store if it was ever opened."""
        if self._database is not None:
            self._database.close()
            self._database = None


def bootstrap_database(directory: Path) -> LazyDatabase:
    database = LazyDatabase(directory)
    if directory.is_dir():
        try:
            database.open()
        except (OSError, sqlite3.Error) as error:
            raise ConfigurationError(f"Could not open database in {directory} ({error}).") from error
    return database
