from __future__ import annotations

import json
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from queryportal.settings import Settings


@dataclass(frozen=True)
class StoredItem:
    """Persisted query data (JSON-compatible) with its write time."""

    data: Any
    stored_at: float


class CacheStorage(Protocol):
    def get(self, key: str, max_age: Optional[float] = None) -> Optional[StoredItem]: ...

    def set(self, key: str, data: Any) -> None: ...

    def remove(self, key: str) -> None: ...

    def clear(self) -> None: ...


class MemoryStorage:
    """Dict-backed storage; keeps nothing across processes."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._items: dict[str, StoredItem] = {}
        self._clock = clock

    def get(self, key: str, max_age: Optional[float] = None) -> Optional[StoredItem]:
        item = self._items.get(key)
        if item is None:
            return None
        if max_age is not None and self._clock() - item.stored_at >= max_age:
            del self._items[key]
            return None
        return item

    def set(self, key: str, data: Any) -> None:
        self._items[key] = StoredItem(data=data, stored_at=self._clock())

    def remove(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()


class SQLiteCacheStorage:
    """SQLite-backed query cache, namespaced by application name.

    Values are stored as JSON text; expired rows are deleted on read.
    """

    SCHEMA_VERSION = "1.0"

    def __init__(
        self,
        db_path: Path,
        namespace: str = "queryportal",
        clock: Callable[[], float] = time.time,
    ):
        self.db_path = db_path
        self.namespace = namespace
        self._clock = clock
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @staticmethod
    def db_path_for_dir(root: Path) -> Path:
        return root / ".queryportal" / "cache.db"

    @classmethod
    def from_settings(cls, settings: Settings, root: Path) -> "SQLiteCacheStorage":
        return cls(cls.db_path_for_dir(root), namespace=settings.app_name)

    # ----------------------------
    # Connection / schema
    # ----------------------------

    def _connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(str(self.db_path))
        con.row_factory = sqlite3.Row
        return con

    def _init_db(self) -> None:
        with self._connect() as con:
            con.execute("PRAGMA journal_mode=WAL;")
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS cache_entries (
                    key TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    stored_at REAL NOT NULL
                );
                """
            )
            if self._get_meta(con, "schema_version") is None:
                self._set_meta(con, "schema_version", self.SCHEMA_VERSION)

    def _storage_key(self, key: str) -> str:
        return f"{self.namespace}-cache-{key}"

    # ----------------------------
    # CacheStorage
    # ----------------------------

    def get(self, key: str, max_age: Optional[float] = None) -> Optional[StoredItem]:
        skey = self._storage_key(key)
        with self._connect() as con:
            row = con.execute(
                "SELECT payload, stored_at FROM cache_entries WHERE key=?",
                (skey,),
            ).fetchone()
            if not row:
                return None
            if max_age is not None and self._clock() - row["stored_at"] >= max_age:
                con.execute("DELETE FROM cache_entries WHERE key=?", (skey,))
                return None
            return StoredItem(data=json.loads(row["payload"]), stored_at=row["stored_at"])

    def set(self, key: str, data: Any) -> None:
        with self._connect() as con:
            con.execute(
                """
                INSERT INTO cache_entries(key, payload, stored_at)
                VALUES(?,?,?)
                ON CONFLICT(key) DO UPDATE SET
                    payload=excluded.payload,
                    stored_at=excluded.stored_at;
                """,
                (self._storage_key(key), json.dumps(data), self._clock()),
            )

    def remove(self, key: str) -> None:
        with self._connect() as con:
            con.execute("DELETE FROM cache_entries WHERE key=?", (self._storage_key(key),))

    def clear(self) -> None:
        with self._connect() as con:
            con.execute(
                "DELETE FROM cache_entries WHERE key LIKE ?",
                (f"{self.namespace}-cache-%",),
            )

    def count(self) -> int:
        with self._connect() as con:
            row = con.execute(
                "SELECT COUNT(*) FROM cache_entries WHERE key LIKE ?",
                (f"{self.namespace}-cache-%",),
            ).fetchone()
            return int(row[0])

    # ----------------------------
    # internal helpers
    # ----------------------------

    def _get_meta(self, con: sqlite3.Connection, key: str) -> Optional[str]:
        row = con.execute("SELECT value FROM meta WHERE key=?", (key,)).fetchone()
        return row[0] if row else None

    def _set_meta(self, con: sqlite3.Connection, key: str, value: str) -> None:
        con.execute(
            """
            INSERT INTO meta(key, value) VALUES(?, ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value
            """,
            (key, value),
        )
