"""Local collection store for the sync client.

This module provides:
- LocalStore: SQLite database holding the vocabulary and history
  collections plus a small key-value table
- LocalCollection: per-collection view with snapshot, import and
  change notification

Architecture:
    Each collection table is keyed by the entity's natural key, so
    import_items() replaces entries by natural key and never produces two
    rows for the same word/language or video id. Entities are stored as
    JSON documents; the stable id is kept in its own column.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from lexisync.client.sync.types import HISTORY, VOCABULARY, CollectionSpec

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]


def _key_column(natural_key: Any) -> str:
    """Encode a natural key (str or tuple) as a text column value."""
    if isinstance(natural_key, tuple):
        return json.dumps(list(natural_key), ensure_ascii=False)
    return json.dumps(natural_key, ensure_ascii=False)


class LocalCollection:
    """One collection of the local store.

    Listeners are called with the collection name after every mutation.
    """

    def __init__(
        self,
        spec: CollectionSpec,
        conn: sqlite3.Connection,
        lock: threading.RLock,
    ) -> None:
        self._spec = spec
        self._conn = conn
        self._lock = lock
        self._listeners: list[ChangeListener] = []

    @property
    def spec(self) -> CollectionSpec:
        return self._spec

    @property
    def name(self) -> str:
        return self._spec.name

    def add_listener(self, callback: ChangeListener) -> None:
        """Register a callback for "items changed" notifications."""
        self._listeners.append(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(self.name)
            except Exception as e:
                logger.warning("Change listener for %s failed: %s", self.name, e)

    def get_all_items(self) -> list[Any]:
        """Snapshot of every entity in the collection."""
        with self._lock:
            rows = self._conn.execute(
                f"SELECT data FROM {self.name} ORDER BY rowid"
            ).fetchall()
        return [self._spec.from_dict(json.loads(row["data"])) for row in rows]

    def get_item(self, natural_key: Any) -> Any | None:
        """Get an entity by natural key."""
        with self._lock:
            row = self._conn.execute(
                f"SELECT data FROM {self.name} WHERE natural_key = ?",
                (_key_column(natural_key),),
            ).fetchone()
        if row is None:
            return None
        return self._spec.from_dict(json.loads(row["data"]))

    def __len__(self) -> int:
        with self._lock:
            row = self._conn.execute(f"SELECT COUNT(*) FROM {self.name}").fetchone()
        return int(row[0])

    def _upsert_rows(self, items: Iterable[Any]) -> int:
        count = 0
        for item in items:
            self._conn.execute(
                f"""
                INSERT INTO {self.name} (natural_key, id, data)
                VALUES (?, ?, ?)
                ON CONFLICT(natural_key) DO UPDATE SET
                    id = excluded.id,
                    data = excluded.data
                """,
                (
                    _key_column(item.natural_key),
                    item.id,
                    json.dumps(item.to_dict(), ensure_ascii=False),
                ),
            )
            count += 1
        return count

    def import_items(self, items: Iterable[Any]) -> None:
        """Replace entities by natural key; other entries are kept."""
        with self._lock:
            self._conn.execute("BEGIN")
            try:
                count = self._upsert_rows(items)
            except Exception:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")
        logger.debug("Imported %d items into %s", count, self.name)
        self._notify()

    def put_item(self, item: Any) -> None:
        """Insert or replace a single entity."""
        with self._lock:
            self._upsert_rows([item])
        self._notify()

    def remove_item(self, item: Any) -> bool:
        """Remove an entity by natural key.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            cursor = self._conn.execute(
                f"DELETE FROM {self.name} WHERE natural_key = ?",
                (_key_column(item.natural_key),),
            )
        removed = cursor.rowcount > 0
        if removed:
            self._notify()
        return removed

    def clear(self) -> None:
        """Remove every entity of the collection."""
        with self._lock:
            self._conn.execute(f"DELETE FROM {self.name}")
        self._notify()


class LocalStore:
    """SQLite-based local store for the synced collections."""

    def __init__(self, db_path: Path) -> None:
        """Open (or create) the local database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._collections = {
            spec.name: LocalCollection(spec, self._conn, self._lock)
            for spec in (VOCABULARY, HISTORY)
        }
        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        with self._lock:
            for name in self._collections:
                self._conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {name} (
                        natural_key TEXT PRIMARY KEY,
                        id TEXT NOT NULL,
                        data TEXT NOT NULL
                    )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_state (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> LocalStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def vocabulary(self) -> LocalCollection:
        return self._collections[VOCABULARY.name]

    @property
    def history(self) -> LocalCollection:
        return self._collections[HISTORY.name]

    def collection(self, name: str) -> LocalCollection:
        """Get a collection by name.

        Raises:
            KeyError: If the collection is unknown.
        """
        return self._collections[name]

    @property
    def collections(self) -> list[LocalCollection]:
        return list(self._collections.values())

    # === Key-value state ===

    def get_state(self, key: str) -> str | None:
        """Get a value from the key-value state table."""
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM sync_state WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        """Set a value in the key-value state table."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                (key, value),
            )
