"""Time-bounded cache of read responses keyed by request fingerprint."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import httpx

from offline_layer.config import CacheConfig
from offline_layer.models import CacheEntry, RequestDescriptor, fingerprint
from offline_layer.storage.kv_store import KeyValueStoreBase
from offline_layer.utils.diagnostics import Diagnostics

logger = logging.getLogger(__name__)

CACHE_HEADER = "X-Offline-Layer"
FRAMING_HEADERS = frozenset({"content-encoding", "content-length", "transfer-encoding"})


class ResponseCache:
    """Stores prior read results, invalidated purely by age.

    Caching is best-effort: storage failures are reported to diagnostics and
    never raised to the caller, so a cache problem can not fail a live
    request. An entry older than ``max_age_seconds`` is deleted when it is
    looked up and reported as absent.
    """

    def __init__(
        self,
        store: KeyValueStoreBase,
        config: CacheConfig,
        diagnostics: Diagnostics,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store.namespace(config.namespace)
        self._max_age = config.max_age_seconds
        self._diagnostics = diagnostics
        self._clock = clock

    @property
    def max_age(self) -> float:
        return self._max_age

    async def store(self, descriptor: RequestDescriptor, response: httpx.Response) -> bool:
        """Capture a response under the descriptor's fingerprint.

        The response must already be read; only ``response.content`` is
        touched, so the caller can keep using it.

        Returns:
            True if the entry was written.
        """
        key = fingerprint(descriptor)
        try:
            entry = CacheEntry(
                body=response.content,
                headers=tuple(response.headers.multi_items()),
                stored_at=self._clock(),
                status_code=response.status_code,
            )
            await self._store.put(key, entry.to_dict())
        except Exception as e:
            self._diagnostics.emit(
                "cache.store_failed",
                f"Could not cache {descriptor.method} {descriptor.url}: {e}",
                key=key,
            )
            return False

        logger.debug("Cached %s %s (%d bytes)", descriptor.method, descriptor.url, len(entry.body))
        return True

    async def match(self, descriptor: RequestDescriptor) -> Optional[CacheEntry]:
        """Return the cached entry, or None if absent or expired."""
        key = fingerprint(descriptor)
        try:
            raw = await self._store.get(key)
            if raw is None:
                return None
            entry = CacheEntry.from_dict(raw)
        except Exception as e:
            self._diagnostics.emit(
                "cache.read_failed",
                f"Could not read cache entry for {descriptor.url}: {e}",
                key=key,
            )
            return None

        if self._is_expired(entry):
            logger.debug("Cache entry for %s expired, removing", descriptor.url)
            await self.delete(key)
            return None
        return entry

    async def delete(self, key: str) -> bool:
        try:
            await self._store.delete(key)
        except Exception as e:
            self._diagnostics.emit(
                "cache.delete_failed", f"Could not delete cache entry {key}: {e}", key=key
            )
            return False
        return True

    async def list_keys(self) -> list[str]:
        try:
            return await self._store.list_keys()
        except Exception as e:
            self._diagnostics.emit("cache.read_failed", f"Could not list cache keys: {e}")
            return []

    async def purge_expired(self) -> int:
        """Delete every expired entry.

        Returns:
            Number of entries removed.
        """
        removed = 0
        for key in await self.list_keys():
            try:
                raw = await self._store.get(key)
                if raw is None:
                    continue
                expired = self._is_expired(CacheEntry.from_dict(raw))
            except Exception as e:
                logger.warning("Dropping unreadable cache entry %s: %s", key, e)
                expired = True
            if expired and await self.delete(key):
                removed += 1

        if removed:
            logger.info("Cache maintenance removed %d expired entries", removed)
        return removed

    def _is_expired(self, entry: CacheEntry) -> bool:
        return entry.age(self._clock()) > self._max_age


def content_headers(headers) -> list[tuple[str, str]]:
    """Drop framing headers that no longer describe an already-decoded body."""
    return [(name, value) for name, value in headers if name.lower() not in FRAMING_HEADERS]


def to_response(entry: CacheEntry, request: Optional[httpx.Request] = None) -> httpx.Response:
    """Rebuild an httpx response from a cache entry."""
    headers = content_headers(entry.headers)
    headers.append((CACHE_HEADER, "cache"))
    return httpx.Response(
        entry.status_code,
        headers=headers,
        content=entry.body,
        request=request,
    )
