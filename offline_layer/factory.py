"""Factory functions for creating configured backend implementations."""

from __future__ import annotations

import logging

import httpx

from offline_layer.config import AppConfig
from offline_layer.storage.kv_store import (
    KeyValueStoreBase,
    MemoryKeyValueStore,
    SqliteKeyValueStore,
)

logger = logging.getLogger(__name__)


def create_store(config: AppConfig) -> KeyValueStoreBase:
    """Create the persistent key-value store selected by config."""
    backend = config.storage.backend

    if backend == "memory":
        logger.info("Using in-memory store (nothing survives a restart)")
        return MemoryKeyValueStore(quota_bytes=config.storage.quota_bytes)

    logger.info("Using SQLite store at %s", config.storage.db_path)
    return SqliteKeyValueStore(
        config.storage.db_path,
        quota_bytes=config.storage.quota_bytes,
    )


def create_inner_transport(config: AppConfig) -> httpx.AsyncBaseTransport:
    """Create the raw network transport that the interceptor wraps."""
    # No transport-level retries: failed writes go to the queue instead.
    return httpx.AsyncHTTPTransport(retries=0)


def create_inner_sync_transport(config: AppConfig) -> httpx.BaseTransport:
    """Create the raw blocking transport for ``httpx.Client`` users."""
    return httpx.HTTPTransport(retries=0)
