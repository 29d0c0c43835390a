"""Tests for the namespaced key-value store."""

import pytest

from offline_layer.errors import QuotaExceededError, StorageError
from offline_layer.storage.kv_store import MemoryKeyValueStore, SqliteKeyValueStore


class TestSqliteKeyValueStore:
    def test_wal_mode(self, tmp_db_path):
        store = SqliteKeyValueStore(tmp_db_path)
        with store._lock:
            mode = store._conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode == "wal"

    @pytest.mark.asyncio
    async def test_put_get_delete(self, tmp_db_path):
        store = SqliteKeyValueStore(tmp_db_path)
        try:
            await store.put("ns", "k", {"a": [1, 2]})
            assert await store.get("ns", "k") == {"a": [1, 2]}

            await store.put("ns", "k", "replaced")
            assert await store.get("ns", "k") == "replaced"

            await store.delete("ns", "k")
            assert await store.get("ns", "k") is None
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_namespaces_are_isolated(self, tmp_db_path):
        store = SqliteKeyValueStore(tmp_db_path)
        try:
            await store.put("cache", "k", 1)
            await store.put("queue", "k", 2)
            assert await store.get("cache", "k") == 1
            assert await store.get("queue", "k") == 2
            assert await store.list_keys("cache") == ["k"]
            assert await store.list_keys("other") == []
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_db_path):
        store = SqliteKeyValueStore(tmp_db_path)
        await store.put("ns", "k", ["first", "second"])
        await store.close()

        reopened = SqliteKeyValueStore(tmp_db_path)
        try:
            assert await reopened.get("ns", "k") == ["first", "second"]
        finally:
            await reopened.close()

    @pytest.mark.asyncio
    async def test_quota_exceeded(self, tmp_db_path):
        store = SqliteKeyValueStore(tmp_db_path, quota_bytes=20)
        try:
            await store.put("ns", "small", "abc")
            with pytest.raises(QuotaExceededError):
                await store.put("ns", "big", "x" * 50)
            assert await store.get("ns", "big") is None
            # Other namespaces have their own budget
            await store.put("other", "k", "x" * 15)
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_replacing_a_key_does_not_count_twice(self, tmp_db_path):
        store = SqliteKeyValueStore(tmp_db_path, quota_bytes=20)
        try:
            await store.put("ns", "k", "x" * 15)
            await store.put("ns", "k", "y" * 15)
            assert await store.get("ns", "k") == "y" * 15
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_unserializable_value(self, tmp_db_path):
        store = SqliteKeyValueStore(tmp_db_path)
        try:
            with pytest.raises(StorageError):
                await store.put("ns", "k", object())
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_closed_store_raises_storage_error(self, tmp_db_path):
        store = SqliteKeyValueStore(tmp_db_path)
        await store.close()
        with pytest.raises(StorageError):
            await store.get("ns", "k")


class TestMemoryKeyValueStore:
    @pytest.mark.asyncio
    async def test_round_trip_and_namespaces(self):
        store = MemoryKeyValueStore()
        await store.put("a", "k", {"x": 1})
        assert await store.get("a", "k") == {"x": 1}
        assert await store.get("b", "k") is None
        await store.delete("a", "missing")
        assert await store.list_keys("a") == ["k"]

    @pytest.mark.asyncio
    async def test_quota(self):
        store = MemoryKeyValueStore(quota_bytes=10)
        with pytest.raises(QuotaExceededError):
            await store.put("a", "k", "x" * 20)
        store.quota_bytes = 0
        await store.put("a", "k", "x" * 20)

    @pytest.mark.asyncio
    async def test_namespace_view(self):
        store = MemoryKeyValueStore()
        view = store.namespace("cache")
        await view.put("k", 1)
        assert await view.get("k") == 1
        assert await view.list_keys() == ["k"]
        assert await store.get("cache", "k") == 1
        await view.delete("k")
        assert await store.list_keys("cache") == []
