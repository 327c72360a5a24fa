"""
Durable key-value storage backed by SQLite.

Values are JSON-encoded and stored in a single ``kvstore`` table. The pending
operation queue, cached collection data, user preferences and the current user
id all live here.
"""

import json
import logging
import pathlib
import sqlite3
from typing import Any, List, Optional

from PySide6 import QtCore

from ..settings import lib
from ..status import status

TABLE = 'kvstore'


class KeyValueStore(QtCore.QObject):
    """Key-value store holding JSON values in a local SQLite database."""

    def __init__(self, db_path: Optional[str] = None, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self.db_path: pathlib.Path = pathlib.Path(db_path) if db_path else lib.settings.db_path
        self._initialize_schema_if_needed()

    def _initialize_schema_if_needed(self) -> None:
        """Create the key-value table when it does not yet exist.

        Raises:
            status.StorageUnavailableException: If the database cannot be opened or created.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            conn.execute(f'CREATE TABLE IF NOT EXISTS {TABLE} (key TEXT PRIMARY KEY, value TEXT)')
            conn.commit()
        except sqlite3.Error as e:
            raise status.StorageUnavailableException(f'Could not initialize "{self.db_path}": {e}') from e
        finally:
            if conn:
                conn.close()

    def connection(self) -> sqlite3.Connection:
        """Return a new connection to the store database.

        Returns:
            sqlite3.Connection: Database connection object.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(self.db_path), timeout=2.0)
        conn.set_progress_handler(lambda: logging.debug('Waiting on DB lock…'), 1000)
        return conn

    def get_raw(self, key: str) -> Optional[str]:
        """Return the stored text for ``key`` without decoding it, or None."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            row = conn.execute(f'SELECT value FROM {TABLE} WHERE key = ?', (key,)).fetchone()
            return row[0] if row else None
        except sqlite3.Error as e:
            raise status.StorageUnavailableException(f'Could not read "{key}": {e}') from e
        finally:
            if conn:
                conn.close()

    def get(self, key: str, default: Any = None) -> Any:
        """Return the decoded value stored under ``key``.

        Args:
            key: Storage key.
            default: Returned when the key is missing.

        Raises:
            status.StorageUnavailableException: If the database cannot be read.
            ValueError: If the stored value is not valid JSON.
        """
        raw = self.get_raw(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        """Encode ``value`` as JSON and store it under ``key``, replacing any previous value.

        Raises:
            status.StorageUnavailableException: If the database cannot be written.
            TypeError: If the value is not JSON serializable.
        """
        payload = json.dumps(value, ensure_ascii=False)

        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            conn.execute(
                f'INSERT INTO {TABLE} (key, value) VALUES (?, ?) '
                f'ON CONFLICT(key) DO UPDATE SET value = excluded.value',
                (key, payload)
            )
            conn.commit()
        except sqlite3.Error as e:
            raise status.StorageUnavailableException(f'Could not write "{key}": {e}') from e
        finally:
            if conn:
                conn.close()

    def remove(self, key: str) -> None:
        """Delete ``key`` from the store. Missing keys are ignored."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            conn.execute(f'DELETE FROM {TABLE} WHERE key = ?', (key,))
            conn.commit()
        except sqlite3.Error as e:
            raise status.StorageUnavailableException(f'Could not remove "{key}": {e}') from e
        finally:
            if conn:
                conn.close()

    def keys(self) -> List[str]:
        """Return all stored keys in sorted order."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            return [row[0] for row in conn.execute(f'SELECT key FROM {TABLE} ORDER BY key')]
        except sqlite3.Error as e:
            raise status.StorageUnavailableException(f'Could not list keys: {e}') from e
        finally:
            if conn:
                conn.close()

    def __contains__(self, key: str) -> bool:
        return self.get_raw(key) is not None

    def clear(self) -> None:
        """Delete every key from the store."""
        logging.debug(f'Clearing key-value store "{self.db_path}".')
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            conn.execute(f'DELETE FROM {TABLE}')
            conn.commit()
        except sqlite3.Error as e:
            raise status.StorageUnavailableException(f'Could not clear store: {e}') from e
        finally:
            if conn:
                conn.close()
