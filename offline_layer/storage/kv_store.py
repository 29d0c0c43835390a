"""Namespaced key-value store with a SQLite (WAL mode) backend."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from offline_layer.errors import QuotaExceededError, StorageError

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv (
    namespace TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (namespace, key)
);

CREATE INDEX IF NOT EXISTS idx_kv_namespace ON kv(namespace);
"""


def _encode(value: Any) -> str:
    try:
        return json.dumps(value, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise StorageError(f"Value is not JSON serializable: {e}") from e


class KeyValueStoreBase(ABC):
    """Abstract async key-value store, isolated per namespace."""

    @abstractmethod
    async def get(self, namespace: str, key: str) -> Optional[Any]:
        """Return the stored value or None if the key is absent."""

    @abstractmethod
    async def put(self, namespace: str, key: str, value: Any) -> None:
        """Store a JSON-serializable value, replacing any previous one."""

    @abstractmethod
    async def delete(self, namespace: str, key: str) -> None:
        """Remove a key. Missing keys are ignored."""

    @abstractmethod
    async def list_keys(self, namespace: str) -> list[str]:
        """All keys in a namespace, in no particular order."""

    async def close(self) -> None:
        """Release backend resources."""

    def namespace(self, name: str) -> NamespacedStore:
        return NamespacedStore(self, name)


class NamespacedStore:
    """A store view bound to one namespace."""

    def __init__(self, store: KeyValueStoreBase, namespace: str):
        self._store = store
        self._namespace = namespace

    @property
    def name(self) -> str:
        return self._namespace

    async def get(self, key: str) -> Optional[Any]:
        return await self._store.get(self._namespace, key)

    async def put(self, key: str, value: Any) -> None:
        await self._store.put(self._namespace, key, value)

    async def delete(self, key: str) -> None:
        await self._store.delete(self._namespace, key)

    async def list_keys(self) -> list[str]:
        return await self._store.list_keys(self._namespace)


class SqliteKeyValueStore(KeyValueStoreBase):
    """Thread-safe SQLite store; blocking calls run in a worker thread."""

    def __init__(self, db_path: str, quota_bytes: int = 0):
        self._db_path = db_path
        self._quota_bytes = quota_bytes
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _init_db(self) -> None:
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()
        logger.info("Key-value store initialized at %s (WAL mode)", self._db_path)

    @contextmanager
    def transaction(self):
        """Context manager for thread-safe transactions."""
        with self._lock:
            if self._conn is None:
                raise StorageError("Store is closed")
            cursor = self._conn.cursor()
            try:
                yield cursor
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _now_iso(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def _get_sync(self, namespace: str, key: str) -> Optional[Any]:
        with self.transaction() as cur:
            cur.execute(
                "SELECT value FROM kv WHERE namespace = ? AND key = ?",
                (namespace, key),
            )
            row = cur.fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt value for {namespace}/{key}: {e}") from e

    def _put_sync(self, namespace: str, key: str, encoded: str) -> None:
        with self.transaction() as cur:
            if self._quota_bytes:
                cur.execute(
                    """SELECT COALESCE(SUM(LENGTH(value)), 0) FROM kv
                    WHERE namespace = ? AND key != ?""",
                    (namespace, key),
                )
                used = cur.fetchone()[0]
                if used + len(encoded) > self._quota_bytes:
                    raise QuotaExceededError(
                        f"Namespace {namespace!r} quota of {self._quota_bytes} bytes exceeded"
                    )
            cur.execute(
                """INSERT INTO kv (namespace, key, value, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(namespace, key)
                DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
                (namespace, key, encoded, self._now_iso()),
            )

    def _delete_sync(self, namespace: str, key: str) -> None:
        with self.transaction() as cur:
            cur.execute(
                "DELETE FROM kv WHERE namespace = ? AND key = ?", (namespace, key)
            )

    def _list_keys_sync(self, namespace: str) -> list[str]:
        with self.transaction() as cur:
            cur.execute("SELECT key FROM kv WHERE namespace = ?", (namespace,))
            return [row["key"] for row in cur.fetchall()]

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as e:
            raise StorageError(f"SQLite error: {e}") from e

    async def get(self, namespace: str, key: str) -> Optional[Any]:
        return await self._run(self._get_sync, namespace, key)

    async def put(self, namespace: str, key: str, value: Any) -> None:
        await self._run(self._put_sync, namespace, key, _encode(value))

    async def delete(self, namespace: str, key: str) -> None:
        await self._run(self._delete_sync, namespace, key)

    async def list_keys(self, namespace: str) -> list[str]:
        return await self._run(self._list_keys_sync, namespace)

    async def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None


class MemoryKeyValueStore(KeyValueStoreBase):
    """In-memory store with the same quota semantics, for tests and ephemeral use."""

    def __init__(self, quota_bytes: int = 0):
        self._quota_bytes = quota_bytes
        self._data: dict[str, dict[str, str]] = {}

    @property
    def quota_bytes(self) -> int:
        return self._quota_bytes

    @quota_bytes.setter
    def quota_bytes(self, value: int) -> None:
        self._quota_bytes = value

    async def get(self, namespace: str, key: str) -> Optional[Any]:
        raw = self._data.get(namespace, {}).get(key)
        return json.loads(raw) if raw is not None else None

    async def put(self, namespace: str, key: str, value: Any) -> None:
        encoded = _encode(value)
        bucket = self._data.setdefault(namespace, {})
        if self._quota_bytes:
            used = sum(len(v) for k, v in bucket.items() if k != key)
            if used + len(encoded) > self._quota_bytes:
                raise QuotaExceededError(
                    f"Namespace {namespace!r} quota of {self._quota_bytes} bytes exceeded"
                )
        bucket[key] = encoded

    async def delete(self, namespace: str, key: str) -> None:
        self._data.get(namespace, {}).pop(key, None)

    async def list_keys(self, namespace: str) -> list[str]:
        return list(self._data.get(namespace, {}))
